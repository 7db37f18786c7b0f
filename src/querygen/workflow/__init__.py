"""
Query generation workflow: stages, prompt templates, LLM response parsers
and the orchestrator that routes between stages.
"""
