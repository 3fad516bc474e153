import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from gateway.database import set_db_path, init_db
from gateway.services.registry import ProviderRegistry
from fakes import RecordingSleep

PROVIDERS_CONFIG = {
    "openai": {
        "models": [
            {"id": "gpt-3.5-turbo", "input": 0.0015, "output": 0.002, "context_budget": 16385},
            {"id": "gpt-4", "input": 0.03, "output": 0.06, "context_budget": 8192},
        ]
    },
    "anthropic": {
        "models": [
            {"id": "claude-3-opus-20240229", "input": 0.015, "output": 0.075},
        ]
    },
    "google": {
        "models": [
            {"id": "gemini-2.0-flash", "input": 0.0001, "output": 0.0004},
        ]
    },
    "perplexity": {
        "models": [
            {"id": "sonar", "input": 0.001, "output": 0.001},
        ]
    },
    "local": {
        "models": [
            {"id": "llama3"},
        ]
    },
}


@pytest.fixture
def temp_db_path():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    Path(path).unlink(missing_ok=True)


@pytest.fixture
def test_settings(temp_db_path):
    from gateway.config import Settings
    return Settings(
        openai_api_key="sk-test-fake",
        anthropic_api_key="sk-ant-test-fake",
        google_api_key="fake-google-key",
        perplexity_api_key="pplx-test-fake",
        database_url=temp_db_path,
        yaml_config={"providers": PROVIDERS_CONFIG},
    )


@pytest.fixture
def registry():
    return ProviderRegistry.from_config(PROVIDERS_CONFIG)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest_asyncio.fixture
async def initialized_db(temp_db_path):
    set_db_path(temp_db_path)
    await init_db()
    yield temp_db_path
