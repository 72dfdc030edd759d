# -*- coding: utf-8 -*-
"""
-------------------------------------------------
Project:   BunkerChat (Nostr Remote Signer & Private Messaging Client)
Author:    @BTCDage
Nostr:     npub17ahz4xa3hvkvvhh4wguzzqknp8p7l5nyzzqc3z53uq538r5qgn0q40z7pw
License:   MIT License
Source:    https://github.com/btcdage2011/DageChat
-------------------------------------------------

Disclaimer / 免责声明:
1. This software is for technical research, cryptography study, and protocol testing purposes only.
   本软件仅供计算机网络技术研究、密码学学习及协议测试使用。
2. The author assumes no liability for any misuse of this software.
   作者不对使用本软件产生的任何后果负责。
3. Illegal use of this software is strictly prohibited.
   严禁将本软件用于任何违反当地法律法规的用途。
-------------------------------------------------
"""


import asyncio
import logging
from signer_errors import RpcTimeoutError

logger = logging.getLogger(__name__)


class PendingRequest:
    __slots__ = ('id', 'method', 'future', 'timeout', 'deadline', 'timer')

    def __init__(self, request_id, method, future, timeout, deadline):
        self.id = request_id
        self.method = method
        self.future = future
        self.timeout = timeout
        self.deadline = deadline
        self.timer = None


class PendingRequests:
    """In-flight RPC calls keyed by correlation id.

    Only touched from the event loop thread, so no lock. Entries are created
    before the request is published and removed on resolve, reject, timeout
    or cancellation of the waiting caller.
    """

    def __init__(self):
        self._pending = {}

    def __len__(self):
        return len(self._pending)

    def __contains__(self, request_id):
        return request_id in self._pending

    def register(self, request_id, method, timeout):
        if request_id in self._pending:
            raise ValueError(f'Duplicate request id: {request_id}')
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry = PendingRequest(request_id, method, future, timeout, loop.time() + timeout)
        entry.timer = loop.call_later(timeout, self._expire, request_id)
        self._pending[request_id] = entry
        future.add_done_callback(lambda f: self._on_done(request_id, f))
        return future

    def _on_done(self, request_id, future):
        if future.cancelled():
            self.discard(request_id)

    def _expire(self, request_id):
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        logger.warning('⏱️ [Signer] RPC %s (id=%s) timed out after %ss', entry.method, request_id, entry.timeout)
        entry.future.set_exception(RpcTimeoutError(request_id, entry.method, entry.timeout))

    def _pop(self, request_id):
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def resolve(self, request_id, result):
        entry = self._pop(request_id)
        if entry is None or entry.future.done():
            return False
        entry.future.set_result(result)
        return True

    def reject(self, request_id, exc):
        entry = self._pop(request_id)
        if entry is None or entry.future.done():
            return False
        entry.future.set_exception(exc)
        return True

    def discard(self, request_id):
        self._pop(request_id)

    def reject_all(self, make_exc):
        ids = list(self._pending)
        for request_id in ids:
            self.reject(request_id, make_exc())
        return len(ids)
