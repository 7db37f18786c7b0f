import pytest
from querygen.config import KnowledgeGraphConfig, PermissionsConfig, WorkflowConfig, get_settings
from querygen.config_constants import MAX_ATTEMPTS, LogLevel, DistanceStrategy


## settings load from the environment seeded in conftest
def test_get_settings():
    settings = get_settings()
    assert settings is not None
    assert settings.workflow.max_attempts == MAX_ATTEMPTS
    assert settings.llm.temperature >= 0.0
    assert settings.app.log_level in LogLevel
    assert settings.vector_store.distance_strategy == DistanceStrategy.COSINE


## singleton
def test_get_settings_singleton():
    settings1 = get_settings()
    settings2 = get_settings()
    assert settings1 is settings2


def test_knowledge_graph_defaults():
    """Score fusion and traversal defaults."""
    config = KnowledgeGraphConfig()
    assert config.vector_weight + config.graph_weight == pytest.approx(1.0)
    assert config.decay == 0.7
    assert config.traversal_depth == 2
    assert config.cache_key == "knowledge_graph"


def test_workflow_defaults():
    """Column selection is off and the retry budget is five."""
    config = WorkflowConfig()
    assert config.max_attempts == 5
    assert config.column_selection is False
    assert config.global_context == []


def test_nested_env_override(monkeypatch):
    """Nested sections are read from VAR__FIELD environment variables."""
    from querygen.config import Settings

    monkeypatch.setenv("WORKFLOW__MAX_ATTEMPTS", "3")
    monkeypatch.setenv("PERMISSIONS__TABLE_PERMISSIONS", '{"employees": "ViewEmployee"}')
    settings = Settings()  # type: ignore[call-arg]

    assert settings.workflow.max_attempts == 3
    assert settings.permissions == PermissionsConfig(table_permissions={"employees": "ViewEmployee"})
