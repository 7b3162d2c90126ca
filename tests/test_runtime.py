"""Tests for handlers.runtime."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from handlers import runtime as runtime_module
from handlers.runtime import build_runtime, get_runtime, reset_runtime, run_async
from ingestor.core.error_taxonomy import ConfigError
from ingestor.core.models import InvocationMetadata
from ingestor.schemas import GENERIC_EVENTS, QUEUE_MESSAGES, embedded_descriptor_set
from ingestor.zerobus_sink import ZerobusStreamFactory
from tests.helpers import FakeFactory, FakeLambdaContext, make_settings


class TestIngestorRuntime:
    def test_stream_config_from_settings(self):
        runtime = build_runtime(make_settings(MAX_INFLIGHT_RECORDS=25), FakeFactory())

        config = runtime.stream_config(QUEUE_MESSAGES)

        assert config.table_name == "main.ingest.events"
        assert config.schema.message_name == "table_sqs_messages"
        assert config.credentials.client_id == "client-id"
        assert config.credentials.client_secret == "client-secret-value"
        assert config.max_inflight_records == 25

    def test_descriptor_set_override(self, tmp_path):
        path = tmp_path / "tables.desc"
        path.write_bytes(embedded_descriptor_set())

        runtime = build_runtime(make_settings(DESCRIPTOR_SET_PATH=str(path)), FakeFactory())

        assert runtime.schema(GENERIC_EVENTS).message_name == "table_aws_raw_events"

    def test_missing_descriptor_set_is_config_error(self, tmp_path):
        with pytest.raises(ConfigError):
            build_runtime(make_settings(DESCRIPTOR_SET_PATH=str(tmp_path / "missing.desc")), FakeFactory())

    def test_default_factory_is_zerobus(self):
        runtime = build_runtime(make_settings())
        factory = runtime.sessions._factory

        assert isinstance(factory, ZerobusStreamFactory)
        assert factory.endpoint == "https://1234.zerobus.us-west-2.cloud.databricks.com"
        assert factory.workspace_url == "https://dbc-1234.cloud.databricks.com"

    def test_orchestrator_budget_holds_back_the_margin(self):
        runtime = build_runtime(make_settings(DEADLINE_MARGIN_MS=500), FakeFactory())
        metadata = InvocationMetadata.from_lambda_context(FakeLambdaContext(remaining_ms=2_000))

        remaining = runtime.orchestrator(GENERIC_EVENTS).deadline_for(metadata).remaining()

        assert remaining is not None
        assert remaining < 1.9
        assert remaining == pytest.approx(1.5, abs=0.05)


class TestProcessState:
    def test_get_runtime_is_built_once(self):
        settings = make_settings(LOG_LEVEL="INFO", LOG_JSON=True, SERVICE_NAME="stream-ingestor")
        with patch.object(runtime_module, "get_settings", return_value=settings), patch.object(
            runtime_module, "configure_structured_logging"
        ) as configure:
            first = get_runtime()
            second = get_runtime()

        assert first is second
        configure.assert_called_once_with(level="INFO", json_output=True, service_name="stream-ingestor")

    def test_config_error_is_not_cached(self):
        with patch.object(runtime_module, "get_settings", side_effect=ConfigError("missing")):
            with pytest.raises(ConfigError):
                get_runtime()

        with patch.object(runtime_module, "get_settings", return_value=make_settings()), patch.object(
            runtime_module, "configure_structured_logging"
        ):
            assert get_runtime() is not None

    def test_run_async_reuses_the_loop(self):
        async def current_loop():
            return asyncio.get_running_loop()

        first = run_async(current_loop())
        second = run_async(current_loop())
        assert first is second

        reset_runtime()
        assert run_async(current_loop()) is not first
