"""Thread 绑定。

本地新建的会话在后端首次确认（done 记录携带 thread_id）后绑定到该 thread，
后续请求都带上这个 thread_id。已经绑定的会话不会被重新绑定（先到先得）。
"""

import logging
from typing import Optional

from byok_chat.domain.collaborators import ConversationCatalog
from byok_chat.engine.session import ChatSession
from byok_chat.infrastructure.logging.logger import logger


class ThreadBinder:
    def __init__(self, session: ChatSession, catalog: Optional[ConversationCatalog] = None):
        self._session = session
        self._catalog = catalog

    def bind_if_unset(self, thread_id: Optional[str]) -> bool:
        """会话尚未绑定时绑定到 thread_id，并通知会话列表刷新。

        Returns:
            本次调用是否真正完成了绑定。
        """

        if not thread_id:
            return False
        current = self._session.thread_id
        if current is not None:
            if current != thread_id:
                logger.log(
                    logging.WARNING,
                    "Ignoring thread id for already bound session",
                    extra={"extra": {"thread_id": current, "candidate_thread_id": thread_id}},
                )
            return False
        self._session._assign_thread_id(thread_id)
        logger.log(logging.INFO, "Bound session to thread", extra={"extra": {"thread_id": thread_id}})
        if self._catalog is not None:
            self._catalog.notify_thread_created(thread_id)
        return True
