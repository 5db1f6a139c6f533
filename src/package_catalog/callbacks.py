# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Completion Callbacks

Single responsibility: Deliver done/fail/always/progress notifications for
one asynchronous operation.

The state is either Pending or Terminal(status). Subscribers added while
Pending are queued and drained exactly once when the operation terminates;
subscribers added after termination fire immediately.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Union

from package_catalog.models.catalog_models import StatusCode

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]
ProgressCallback = Callable[[Any, int, int], None]


@dataclass(frozen=True)
class Pending:
    """Operation still running"""


@dataclass(frozen=True)
class Terminal:
    """Operation finished with `status`"""
    status: StatusCode

    @property
    def succeeded(self) -> bool:
        return self.status == StatusCode.SUCCESS


CompletionState = Union[Pending, Terminal]


class Completion:
    """Subscriber lists for one operation, owned by the object that runs it"""

    def __init__(self, owner: Any, state: CompletionState = Pending()):
        self.owner = owner
        self.state: CompletionState = state
        self._done: List[Callback] = []
        self._fail: List[Callback] = []
        self._always: List[Callback] = []
        self._progress: List[ProgressCallback] = []

    @property
    def is_pending(self) -> bool:
        return isinstance(self.state, Pending)

    def restart(self):
        """Begin a new operation cycle; earlier subscribers have already fired"""
        self.state = Pending()

    def add_done(self, callback: Callback):
        if self.is_pending:
            self._done.append(callback)
        elif self.state.succeeded:
            callback(self.owner)

    def add_fail(self, callback: Callback):
        if self.is_pending:
            self._fail.append(callback)
        elif not self.state.succeeded:
            callback(self.owner)

    def add_always(self, callback: Callback):
        if self.is_pending:
            self._always.append(callback)
        else:
            callback(self.owner)

    def add_progress(self, callback: ProgressCallback):
        # Nothing left to report once terminal
        if self.is_pending:
            self._progress.append(callback)

    def report_progress(self, current: int, total: int):
        for callback in list(self._progress):
            callback(self.owner, current, total)

    def finish(self, status: StatusCode):
        """
        Move to Terminal(status) and drain the subscriber lists.

        Calling finish() on an already terminal completion is ignored.
        """
        if not self.is_pending:
            logger.debug(f"Ignoring second completion ({status.value}) for {self.owner!r}")
            return

        self.state = Terminal(status)
        done, fail, always = self._done, self._fail, self._always
        self._done, self._fail, self._always, self._progress = [], [], [], []

        for callback in (done if self.state.succeeded else fail):
            callback(self.owner)
        for callback in always:
            callback(self.owner)
