"""Remote control of panel-managed game servers."""

from .client import PanelClient, PowerSignal
from .provisioning import Provisioner, image_for_version
from .tracker import PendingOperation, completed, issue, poll_until

__all__ = [
    "PanelClient",
    "PendingOperation",
    "PowerSignal",
    "Provisioner",
    "completed",
    "image_for_version",
    "issue",
    "poll_until",
]
