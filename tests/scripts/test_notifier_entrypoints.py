from __future__ import annotations

from types import SimpleNamespace

import pytest

from scripts import notifier_runtime


def _settings() -> SimpleNamespace:
    return SimpleNamespace(log_level="INFO", poll_interval_seconds=60)


class CountingSignal:
    """Stops after a fixed number of waits."""

    def __init__(self, stop_after: int) -> None:
        self.stop_after = stop_after
        self.waits: list[float] = []

    def is_set(self) -> bool:
        return len(self.waits) >= self.stop_after

    def wait(self, timeout: float) -> bool:
        self.waits.append(timeout)
        return self.is_set()


def test_run_notifier_once(mocker) -> None:
    module = __import__("scripts.run_notifier", fromlist=["main"])

    mocker.patch.object(module, "load_dotenv")
    settings = _settings()
    mocker.patch.object(module, "get_settings", return_value=settings)
    repository = mocker.Mock()
    mocker.patch.object(module, "create_repository", return_value=repository)
    sync = mocker.patch.object(
        module,
        "sync_organizations_use_case",
        return_value=SimpleNamespace(errors=[]),
    )
    poller = mocker.Mock()
    mocker.patch.object(module, "create_activity_poller", return_value=poller)
    exporter = mocker.patch.object(module, "ensure_metrics_exporter")
    mocker.patch.object(module.notifier_runtime, "initialize_logging")
    mocker.patch.object(
        module.notifier_runtime,
        "create_shutdown_controller",
        return_value=mocker.Mock(),
    )
    mocker.patch.object(module.notifier_runtime, "install_signal_handlers")
    run_loop = mocker.patch.object(module.notifier_runtime, "run_scheduler_loop")

    exit_code = module.main(["--run-once", "--metrics-port", "9100"])

    assert exit_code == 0
    sync.assert_called_once_with(repository, settings)
    exporter.assert_called_once_with(9100)
    run_loop.assert_called_once()
    kwargs = run_loop.call_args.kwargs
    assert kwargs["run_once"] is True
    assert kwargs["interval_seconds"] == 60.0
    assert kwargs["action"] == poller.run_tick
    repository.close.assert_called_once()


def test_run_notifier_rejects_non_positive_interval() -> None:
    module = __import__("scripts.run_notifier", fromlist=["parse_args"])

    with pytest.raises(SystemExit):
        module.parse_args(["--interval-seconds", "0"])


def test_send_test_notification_unknown_org(mocker) -> None:
    module = __import__("scripts.send_test_notification", fromlist=["main"])

    mocker.patch.object(module, "load_dotenv")
    mocker.patch.object(module, "get_settings", return_value=_settings())
    repository = mocker.Mock()
    repository.get_organization.return_value = None
    mocker.patch.object(module, "create_repository", return_value=repository)
    mocker.patch.object(module, "sync_organizations_use_case")
    mocker.patch.object(module.notifier_runtime, "initialize_logging")
    use_case = mocker.patch.object(module, "send_test_notification_use_case")

    exit_code = module.main(["ghost", "42"])

    assert exit_code == 1
    use_case.assert_not_called()
    repository.close.assert_called_once()


def test_send_test_notification_success(mocker) -> None:
    module = __import__("scripts.send_test_notification", fromlist=["main"])

    mocker.patch.object(module, "load_dotenv")
    mocker.patch.object(module, "get_settings", return_value=_settings())
    repository = mocker.Mock()
    organization = mocker.Mock()
    repository.get_organization.return_value = organization
    mocker.patch.object(module, "create_repository", return_value=repository)
    mocker.patch.object(module, "sync_organizations_use_case")
    mocker.patch.object(module.notifier_runtime, "initialize_logging")
    notifier = mocker.Mock()
    gitlab = mocker.Mock()
    mocker.patch.object(module, "create_notifier", return_value=notifier)
    mocker.patch.object(module, "create_gitlab_client", return_value=gitlab)
    use_case = mocker.patch.object(
        module,
        "send_test_notification_use_case",
        return_value=SimpleNamespace(sent=True),
    )

    exit_code = module.main(["acme", "42", "--subject", "Hello"])

    assert exit_code == 0
    use_case.assert_called_once_with(
        organization, "42", notifier, gitlab, subject="Hello", user_name=None
    )


def test_scheduler_loop_runs_until_shutdown(mocker) -> None:
    action = mocker.Mock()
    signal = CountingSignal(stop_after=3)

    iterations = notifier_runtime.run_scheduler_loop(
        controller=signal, interval_seconds=5, run_once=False, action=action
    )

    assert iterations == 3
    assert action.call_count == 3
    assert signal.waits == [5, 5, 5]


def test_scheduler_loop_survives_failing_iteration(mocker) -> None:
    action = mocker.Mock(side_effect=[RuntimeError("boom"), None])
    signal = CountingSignal(stop_after=2)

    iterations = notifier_runtime.run_scheduler_loop(
        controller=signal, interval_seconds=1, run_once=False, action=action
    )

    assert iterations == 2


def test_scheduler_loop_run_once_propagates_failure(mocker) -> None:
    action = mocker.Mock(side_effect=RuntimeError("boom"))

    with pytest.raises(RuntimeError):
        notifier_runtime.run_scheduler_loop(
            controller=CountingSignal(stop_after=10),
            interval_seconds=1,
            run_once=True,
            action=action,
        )
