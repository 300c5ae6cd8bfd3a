"""
Configuration loading, validation and the config -> kernel bridges.
"""

import pytest

from inspex_config import get_active_config, load_config
from inspex_config.bridges import (
    build_checklist_seed,
    build_expected_offsets,
    build_generator_options,
)
from inspex_config.loader import deep_merge
from inspex_kernel.domain.actor import ActorRole
from inspex_kernel.domain.dtos import AssetSpec
from inspex_kernel.exceptions import ConfigurationError
from inspex_kernel.services.artifact_generator import DEFAULT_STATEMENT, DEFAULT_TITLE
from inspex_services.email_notifier import LoggingNotificationSink, SmtpNotificationSink
from inspex_services.storage import InMemoryObjectStorage, LocalObjectStorage
from inspex_services.workflow_container import InspexWorkflow, build_sinks, build_storage

NO_ENV: dict = {}


@pytest.fixture
def write_config(tmp_path):
    def _write(body, name="inspex.yaml"):
        path = tmp_path / name
        path.write_text(body)
        return path

    return _write


class TestDefaults:

    def test_built_in_values(self):
        config = load_config(environ=NO_ENV)

        assert config.source is None
        assert config.database.url == "sqlite:///inspex.db"
        assert config.storage.backend == "local"
        assert config.storage.key_prefix == "certificates/"
        assert config.notifications.smtp.port == 465
        assert config.notifications.smtp.ssl is True
        assert config.notifications.smtp.has_credentials is False
        assert config.workflow.expected_offsets_days == {
            "engineer_review": 3,
            "admin_release": 1,
            "client_response": 7,
            "engineer_rereview": 2,
        }

    def test_certificate_text_matches_generator(self):
        config = load_config(environ=NO_ENV)
        assert config.certificate.title == DEFAULT_TITLE
        assert config.certificate.statement == DEFAULT_STATEMENT

    def test_default_checklist(self):
        checklist = load_config(environ=NO_ENV).checklist
        assert len(checklist) == 13
        assert checklist[0].name == "Confirm Drawing Number used by Fabricator"
        assert [p.order_index for p in checklist] == list(range(1, 14))


class TestDeploymentFile:

    def test_merged_over_defaults(self, write_config):
        path = write_config(
            "database:\n"
            "  url: postgresql://inspex@db/inspex\n"
            "notifications:\n"
            "  smtp:\n"
            "    port: 587\n"
            "    ssl: false\n"
            "  recipients:\n"
            "    admin: [ops@inspex.test]\n"
        )

        config = load_config(path, environ=NO_ENV)

        assert config.source == str(path)
        assert config.database.url == "postgresql://inspex@db/inspex"
        assert config.database.busy_timeout == 30.0
        assert config.notifications.smtp.port == 587
        assert config.notifications.smtp.ssl is False
        assert config.notifications.smtp.host == "mail.spectiv.co.za"
        assert config.notifications.recipients["admin"] == ("ops@inspex.test",)
        assert config.notifications.recipients["client"] == ()

    def test_lists_replace(self, write_config):
        path = write_config("checklist:\n  - name: Only Point\n")
        [point] = load_config(path, environ=NO_ENV).checklist
        assert (point.name, point.description, point.order_index) == ("Only Point", "", 1)

    def test_deep_merge_leaves_inputs_alone(self):
        base = {"a": {"b": 1, "c": 2}}
        merged = deep_merge(base, {"a": {"c": 3}})
        assert merged == {"a": {"b": 1, "c": 3}}
        assert base == {"a": {"b": 1, "c": 2}}


class TestEnvironmentOverrides:

    def test_overrides_win_over_file(self, write_config):
        path = write_config("database:\n  url: sqlite:///from-file.db\n")
        config = load_config(
            path,
            environ={
                "INSPEX_DATABASE_URL": "sqlite:///from-env.db",
                "INSPEX_SMTP_PORT": "2525",
                "INSPEX_SMTP_USER": "inspex@example.test",
                "INSPEX_SMTP_PASSWORD": "secret",
            },
        )
        assert config.database.url == "sqlite:///from-env.db"
        assert config.notifications.smtp.port == 2525
        assert config.notifications.smtp.has_credentials is True

    def test_empty_value_ignored(self):
        config = load_config(environ={"INSPEX_DATABASE_URL": ""})
        assert config.database.url == "sqlite:///inspex.db"

    def test_bad_port(self):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(environ={"INSPEX_SMTP_PORT": "smtp"})
        assert exc_info.value.setting == "INSPEX_SMTP_PORT"


class TestValidation:

    @pytest.mark.parametrize(
        "body, setting",
        [
            ("storage:\n  backend: s3\n", "storage.backend"),
            ("notifications:\n  recipients:\n    auditor: [a@b.test]\n", "notifications.recipients.auditor"),
            ("notifications:\n  max_workers: 0\n", "notifications.max_workers"),
            ("workflow:\n  expected_offsets_days:\n    admin_release: -1\n", "workflow.expected_offsets_days.admin_release"),
            ("workflow:\n  expected_offsets_days:\n    admin_release: soon\n", "workflow.expected_offsets_days.admin_release"),
            ("checklist:\n  - name: A\n  - name: A\n", "checklist[2].name"),
            ("checklist:\n  - description: nameless\n", "checklist[1].name"),
            ("database:\n  url: ''\n", "database.url"),
            ("database:\n  busy_timeout: forever\n", "database.busy_timeout"),
            ("certificate: null\n", "certificate"),
        ],
    )
    def test_invalid_setting(self, write_config, body, setting):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(write_config(body), environ=NO_ENV)
        assert exc_info.value.setting == setting

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="file not found"):
            load_config(tmp_path / "absent.yaml", environ=NO_ENV)

    def test_malformed_yaml(self, write_config):
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            load_config(write_config("database: [unclosed\n"), environ=NO_ENV)

    def test_top_level_must_be_mapping(self, write_config):
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(write_config("- a\n- b\n"), environ=NO_ENV)


class TestActiveConfig:

    def test_reads_file_from_environment(self, write_config, monkeypatch, captured_logs):
        path = write_config("storage:\n  backend: memory\n")
        monkeypatch.setenv("INSPEX_CONFIG_FILE", str(path))

        config = get_active_config()

        assert config.storage.backend == "memory"
        [trace] = [r for r in captured_logs() if r["message"] == "INSPEX_CONFIG_TRACE"]
        assert trace["config_source"] == str(path)
        assert trace["storage_backend"] == "memory"
        assert trace["checklist_points"] == 13

    def test_explicit_file_wins(self, write_config, monkeypatch):
        monkeypatch.setenv("INSPEX_CONFIG_FILE", str(write_config("storage:\n  backend: s3\n", "bad.yaml")))
        config = get_active_config(write_config("storage:\n  backend: memory\n"))
        assert config.storage.backend == "memory"


class TestBridges:

    def test_kernel_inputs(self):
        config = load_config(environ=NO_ENV)

        assert build_expected_offsets(config) == dict(config.workflow.expected_offsets_days)
        seed = build_checklist_seed(config)
        assert seed[3] == {
            "name": "Confirm Plate Thickness",
            "description": "HP=6mm / LP=3mm (140 kPa - HP & LP=3mm)",
            "order_index": 4,
        }
        assert build_generator_options(config) == {
            "key_prefix": "certificates/",
            "title": DEFAULT_TITLE,
            "statement": DEFAULT_STATEMENT,
        }

    def test_storage_backends(self, write_config, tmp_path):
        memory = load_config(write_config("storage:\n  backend: memory\n"), environ=NO_ENV)
        assert isinstance(build_storage(memory), InMemoryObjectStorage)

        root = tmp_path / "docs"
        local = load_config(write_config(f"storage:\n  root: {root}\n", "local.yaml"), environ=NO_ENV)
        storage = build_storage(local)
        assert isinstance(storage, LocalObjectStorage)
        assert storage.root == root.resolve()

    def test_sinks(self, write_config):
        config = load_config(environ=NO_ENV)
        assert [type(s) for s in build_sinks(config, None, InMemoryObjectStorage())] == [
            LoggingNotificationSink
        ]

        with_smtp = load_config(
            environ={"INSPEX_SMTP_USER": "u@example.test", "INSPEX_SMTP_PASSWORD": "pw"}
        )
        assert [type(s) for s in build_sinks(with_smtp, None, InMemoryObjectStorage())] == [
            LoggingNotificationSink,
            SmtpNotificationSink,
        ]

        disabled = load_config(write_config("notifications:\n  enabled: false\n"), environ=NO_ENV)
        assert build_sinks(disabled, None, InMemoryObjectStorage()) == []


def test_workflow_from_config(write_config, tmp_path, admin, inspector):
    path = write_config(
        f"database:\n  url: sqlite:///{tmp_path / 'inspex.db'}\n"
        "storage:\n  backend: memory\n"
        "notifications:\n  synchronous: true\n"
    )
    workflow = InspexWorkflow.from_config(load_config(path, environ=NO_ENV))
    try:
        assert len(workflow.list_inspection_points()) == 13
        asset = workflow.register_asset(admin, AssetSpec(door_number="3", size="2.0", pressure_kpa=140))
        session = workflow.start_inspection(inspector, asset.asset_id)
        assert len(session.checks) == 13
        assert workflow.pending_tasks(ActorRole.ENGINEER) == []
    finally:
        workflow.close()
