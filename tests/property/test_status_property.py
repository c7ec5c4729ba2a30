from pathlib import Path

from hypothesis import given
from hypothesis import strategies as st

from spages.core.broadcaster import EventBroadcaster
from spages.core.deploy_manager import DeployManager
from spages.core.git_manager import GitManager
from spages.core.process_registry import ProcessRegistry
from spages.core.runtime_manager import RuntimeManager
from spages.db.accounts import AccountStore
from spages.db.store import ProjectStore
from spages.models.project import ProjectStatus


class _Registry(ProcessRegistry):
    def __init__(self, live: bool) -> None:
        super().__init__()
        self.live = live

    def is_running(self, project_id: str) -> bool:
        del project_id
        return self.live


def _manager(live: bool) -> DeployManager:
    root = Path("unused")
    return DeployManager(
        ProjectStore(root / "projects", root / "index.json"),
        RuntimeManager(root / "runtimes"),
        GitManager(),
        EventBroadcaster(),
        _Registry(live),
        AccountStore(root / "accounts.json"),
    )


@given(st.sampled_from([member.value for member in ProjectStatus]))
def test_project_status_values_are_lowercase(value: str) -> None:
    assert value == value.lower()


@given(stored=st.sampled_from(list(ProjectStatus)), live=st.booleans())
def test_derived_status_ignores_stale_running_and_stopped(
    stored: ProjectStatus, live: bool
) -> None:
    manager = _manager(live)

    status = manager.real_status("proj_1", stored)

    if live:
        assert status is ProjectStatus.RUNNING
    elif stored is ProjectStatus.FAILED:
        assert status is ProjectStatus.FAILED
    else:
        assert status is ProjectStatus.STOPPED
