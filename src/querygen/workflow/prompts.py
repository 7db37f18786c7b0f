"""
Prompt builders for the workflow's LLM calls.

Every builder returns one fully rendered string. The expected output
formats here are the contracts the functions in parsers.py read back.
"""

from typing import Dict, List, Optional, Sequence, Tuple

from querygen.domain.base_enums import CacheCategory
from querygen.domain.dataset import CacheCandidate
from querygen.domain.schema import DatabaseSchema, TableSchema


def rules_section(rules: Sequence[str], lead: Optional[str] = None) -> str:
    """`<must-follow-rules>` block; empty string when there are no rules."""
    if not rules:
        return ""
    lines = ["<must-follow-rules>"]
    if lead:
        lines.append(lead)
    lines.extend(f"- {rule}" for rule in rules)
    lines.append("</must-follow-rules>")
    return "\n".join(lines)


# =============================================================================
# Cache check
# =============================================================================

def build_cache_prompt(prompt: str, candidates: Sequence[CacheCandidate]) -> str:
    queries = "\n".join(
        f"<query-{index}>\n{candidate.text}\n</query-{index}>"
        for index, candidate in enumerate(candidates)
    )
    return f"""<instructions>
You are an expert semantic analyser. You will be given a prompt and a list of past prompts that were successfully processed. Return the most relevant past prompt and how it is relevant -
- return '{CacheCategory.AS_IS.value}' if the past prompt's result contains the information the user is looking for without any change and can be used as it is.
- return '{CacheCategory.SIMILAR.value}' if the past prompt's result is similar to the new prompt but not exactly, and can be modified to get the data the user needs.
- return '{CacheCategory.NOT_RELEVANT.value}' if no past prompt is relevant to the new prompt.
A past prompt with extra information still counts as exactly the same as long as it does not contradict the new prompt.
</instructions>
<user-question>
{prompt}
</user-question>
<queries>
{queries}
</queries>
<output-format>
format -
relevance index-of-query-starting-from-0
examples -
{CacheCategory.AS_IS.value} 1

{CacheCategory.SIMILAR.value} 0

{CacheCategory.NOT_RELEVANT.value}
</output-format>
<output-instructions>
Do not return any other text or explanation, just the output in the above format.
</output-instructions>"""


# =============================================================================
# Table and column selection
# =============================================================================

def build_table_feedback(last_tables: Sequence[str], feedbacks: Sequence[str]) -> str:
    if not feedbacks:
        return ""
    errors = "\n".join(feedbacks)
    return f"""<feedback-instructions>
We also need to consider the errors from the last attempt at query generation.

In the last attempt, these were the tables selected:
{', '.join(last_tables)}

But it was rejected with the following errors:
{errors}

Use these if they are relevant to the table selection, otherwise ignore them, they will be considered again during SQL generation.
</feedback-instructions>"""


def build_table_selection_prompt(
    prompt: str,
    tables: Sequence[str],
    rules: str,
    feedback: str,
) -> str:
    """
    Args:
        prompt: User question
        tables: Candidate lines, one `name: description` per table
        rules: Rendered rules section
        feedback: Rendered feedback section
    """
    table_lines = "\n\n".join(tables)
    return f"""<instructions>
You are an AI assistant that extracts the table names relevant to the user's question. They will be used to generate an SQL query later.
- Consider not just the user question but also the rules and the table descriptions while selecting the tables.
- Carefully consider every table before including or excluding it.
- If doubtful about a table's relevance, include it anyway to give the SQL generation step more options.
- Assume that tables have the columns needed to relate them to any other table even if the description does not mention it.
- If you are not sure which tables to select, return your doubt asking the user for more details in the following format -
failed attempt: reason for failure
</instructions>

<tables-with-description>
{table_lines}
</tables-with-description>

<user-question>
{prompt}
</user-question>

{rules}

{feedback}

<output-format>
The output should be just a comma separated list of table names with no other text, comments or formatting.
Table names must match the names in the input exactly, including any schema prefix.
<example-output>
public.employees, public.departments
</example-output>
In case of failure, return the failure message in the format -
failed attempt: <reason for failure>
</output-format>"""


def _describe_columns(table_name: str, table: TableSchema) -> str:
    lines = []
    for column_name, column in table.columns.items():
        details = [
            f"{column_name} ({column.type})",
            "NOT NULL" if column.required else "NULL",
            "PRIMARY KEY" if column_name in table.primary_key else "",
            f"- {column.description}" if column.description else "",
        ]
        lines.append("  - " + " ".join(part for part in details if part))
    return f"{table_name}: {table.description}\nColumns:\n" + "\n".join(lines)


def build_column_feedback(last_columns: Dict[str, List[str]], feedbacks: Sequence[str]) -> str:
    if not feedbacks:
        return ""
    errors = "\n".join(feedbacks)
    selected = "\n".join(f"{table}: {', '.join(columns)}" for table, columns in last_columns.items())
    return f"""<feedback-instructions>
We also need to consider the errors from the last attempt at query generation.

In the last attempt, these were the columns selected:
{selected}

But it was rejected with the following errors:
{errors}

Use these errors to refine the column selection. Consider whether additional columns are needed for joins, filtering or calculations.
</feedback-instructions>"""


def build_column_selection_prompt(
    prompt: str,
    schema: DatabaseSchema,
    rules: str,
    feedback: str,
    retry_note: Optional[str] = None,
) -> str:
    tables = "\n\n".join(_describe_columns(name, table) for name, table in schema.tables.items())
    retry = f"\n<previous-answer-problem>\n{retry_note}\n</previous-answer-problem>\n" if retry_note else ""
    return f"""<instructions>
You are an AI assistant that identifies the columns relevant to a user's question.
For each table, return only the column names relevant to the question. Include:
1. Columns directly mentioned or implied in the question
2. Primary key columns
3. Foreign key columns needed for relationships
4. Columns needed for filtering, sorting or calculations
It is better to include a few extra relevant columns than to miss important ones.
If you are not sure which columns to select, return your doubt asking the user for more details in the following format:
failed attempt: <reason for failure>
</instructions>

<tables-with-columns>
{tables}
</tables-with-columns>

<user-question>
{prompt}
</user-question>

{rules}

{feedback}
{retry}
<output-format>
Return a valid JSON object with table names as keys and arrays of column names as values, for example:
{{
  "table_name1": ["column1", "column2"],
  "table_name2": ["column1"]
}}
In case of failure, return the failure message in the format:
failed attempt: <reason for failure>
</output-format>"""


# =============================================================================
# Permissions
# =============================================================================

def build_permission_message_prompt(prompt: str, tables: Sequence[str], missing: Sequence[str]) -> str:
    return f"""You are an AI assistant that received the following request from the user -
{prompt}

This request requires access to the following tables -
{', '.join(tables)}

and the user does not have the following permissions -
{', '.join(missing)}

Write an error message telling the user that they do not have permission to access the data needed for this request and that it cannot proceed, then ask for a new request.
Do not mention table names or any technical details, use plain language.
Return only the error message, with no other text, comments or explanations."""


# =============================================================================
# SQL generation
# =============================================================================

SQL_OUTPUT_FORMAT = """Return the output in the following format with exactly 2 parts within opening and closing tags -
<sql>
The required valid SQL satisfying all the constraints.
It should contain nothing that is not part of the SQL.
Every line of SQL should have a comment above it explaining the purpose of that line.
</sql>
<description>
A detailed but non-technical description of the SQL describing every condition and concept it uses.
Plain English text with no special formatting, no database terminology such as tables, columns, joins or subqueries.
Keep it short without omitting any detail.
</description>"""


def build_sql_example(sample_sql: Optional[str], sample_prompt: Optional[str], from_cache: bool) -> str:
    """Worked example section built from a cached or previously generated query."""
    if not sample_sql:
        return ""
    if from_cache:
        tag = "similar-example-query"
        lead = "Here is an example query, validated by the user, for a question similar to this one"
    else:
        tag = "last-generated-query"
        lead = "Here is the last valid SQL query generated for the user, to be used as the base line for the next query"
    return f"""<{tag}>
{lead} -
{sample_sql}
It was generated for the following question -
{sample_prompt or ""}
</{tag}>"""


def build_sql_feedback(last_sql: Optional[str], feedbacks: Sequence[str]) -> str:
    """Latest feedback in full plus a historical list of the earlier ones."""
    if not feedbacks:
        return ""
    historical = ""
    if len(feedbacks) > 1:
        historical = (
            "<historical-feedbacks>\nYou already faced the following issues in the past -\n"
            + "\n".join(feedbacks[:-1])
            + "\n</historical-feedbacks>"
        )
    return f"""<feedback-instructions>
Consider the feedback on the last attempt at query generation.
Fix the reported error without introducing any new or past errors.
In the last attempt, you generated this SQL query -
<last-generated-query>
{last_sql or ""}
</last-generated-query>

<last-error>
This was the error in the latest query you generated -
{feedbacks[-1]}
</last-error>

{historical}
</feedback-instructions>"""


def build_sql_generation_prompt(
    dialect: str,
    question: str,
    ddl: str,
    rules: str,
    example: str,
    feedback: str,
) -> str:
    return f"""<instructions>
You are an expert AI assistant that generates SQL queries from user questions and a given database schema.
Do not hallucinate details or make up information.
Convert the question into a SQL query for the given {dialect} database schema.
Adhere to these rules:
- Go through the question and the database schema word by word to answer the question appropriately.
- DO NOT write any DML or DDL statement (INSERT, UPDATE, DELETE, DROP etc.).
- Never select all the columns of a table, only the columns relevant to the question.
- Generate a single query; use JOINs, subqueries, CTEs or UNIONs when multiple results are needed.
- Do not assume anything about the user's intent beyond what the question states.
- Group conditions with brackets when a WHERE clause mixes AND and OR.
- Follow every rule in the "must-follow-rules" section. DO NOT SKIP ANY RULE.
</instructions>
<user-question>
{question}
</user-question>
<context>
<database-schema>
{ddl}
</database-schema>

{rules}

{example}

{feedback}
</context>
<output-instructions>
{SQL_OUTPUT_FORMAT}
</output-instructions>"""


# =============================================================================
# Validation
# =============================================================================

def build_error_triage_prompt(error: str, query: Optional[str]) -> str:
    return f"""You are an AI assistant that categorizes an SQL query error into one of the following two categories -
- table_not_found
- query_error

Here is the SQL query error to categorize -
{error}

and here is the query that resulted in the error -
{query or ""}

Any error indicating that a table or column is missing is table_not_found, every other error is query_error.
Return only one of these two options as a string, without any additional text or comments."""


def build_semantic_validation_prompt(
    prompt: str,
    sql: str,
    ddl: str,
    rules: str,
    last_feedback: Optional[str],
) -> str:
    feedback = ""
    if last_feedback:
        feedback = f"""<last-feedback>
The previous attempt was rejected with this feedback, check that it is resolved -
{last_feedback}
</last-feedback>"""
    return f"""<instructions>
You are an expert reviewer of SQL queries. Check whether the SQL query below answers the user's question exactly, given the database schema and the rules.
Check every condition, filter, join, aggregation and conversion the question and the rules require.
Do not reject the query for style, formatting or performance.
</instructions>
<user-question>
{prompt}
</user-question>
<database-schema>
{ddl}
</database-schema>

{rules}

<sql-query>
{sql}
</sql-query>

{feedback}

<output-format>
Return exactly one line:
valid
if the query answers the question and follows every rule, otherwise
invalid: <short reason describing what must change>
</output-format>"""


# =============================================================================
# Knowledge graph
# =============================================================================

def build_concept_prompt(cluster: Sequence[Tuple[str, TableSchema]], sample_columns: int) -> str:
    tables = "\n\n".join(
        f"Table: {name}\nDescription: {table.description}\n"
        f"Key columns: {', '.join(list(table.columns)[:sample_columns])}"
        for name, table in cluster
    )
    return f"""Analyze this cluster of related database tables and identify the main semantic concept that unifies them:

{tables}

Return a single JSON object for the main concept with the following structure:
{{
  "concept": "main_concept_name",
  "description": "what unifies these tables",
  "domain": "business_domain",
  "confidence": 0.8
}}

The output must be JUST a valid JSON object with no markdown or other text.
Focus on the core business concept or data domain."""
