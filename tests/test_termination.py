import unittest

from src.sweeper.detector import Failed, NotYetTerminated, Terminated, detect_termination

SIDECAR = "linkerd-proxy"


def running(name):
    return {"name": name, "state": {"running": {"startedAt": "2024-01-01T00:00:00Z"}}}


def terminated(name, exit_code):
    return {"name": name, "state": {"terminated": {"exitCode": exit_code, "reason": "Completed"}}}


class TerminationDetectorTests(unittest.TestCase):
    def test_first_terminated_container_wins(self) -> None:
        statuses = [running(SIDECAR), terminated("app1", 0), running("app2")]
        self.assertEqual(detect_termination(statuses, SIDECAR), Terminated("app1"))

    def test_failed_container_is_not_swept(self) -> None:
        statuses = [running(SIDECAR), terminated("app1", 1)]
        self.assertEqual(detect_termination(statuses, SIDECAR), Failed("app1", 1))

    def test_first_match_even_when_later_container_failed(self) -> None:
        statuses = [terminated("app1", 0), terminated("app2", 137)]
        self.assertIsInstance(detect_termination(statuses, SIDECAR), Terminated)

    def test_sidecar_termination_is_ignored(self) -> None:
        statuses = [terminated(SIDECAR, 0), running("app")]
        self.assertIsInstance(detect_termination(statuses, SIDECAR), NotYetTerminated)

    def test_missing_state_counts_as_running(self) -> None:
        statuses = [{"name": "app"}, {"name": "other", "state": None}]
        self.assertIsInstance(detect_termination(statuses, SIDECAR), NotYetTerminated)

    def test_no_statuses(self) -> None:
        self.assertIsInstance(detect_termination([], SIDECAR), NotYetTerminated)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
