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


import json
import asyncio
import pytest
from nostr_crypto import NostrCrypto
from relay_pool import STATUS_CONNECTED, STATUS_DISCONNECTED, RelayPool
from signer_errors import TransportError


class FakeWorker:

    def __init__(self, url, connected=True):
        self.url = url
        self.status = STATUS_CONNECTED if connected else STATUS_DISCONNECTED
        self.sent = []
        self.task = None

    def is_connected(self):
        return self.status == STATUS_CONNECTED

    async def send_str(self, data):
        self.sent.append(json.loads(data))
        return True

    def stop(self):
        pass


def _note(content='gm', kind=1):
    priv = NostrCrypto.generate_private_key_hex()
    return NostrCrypto.sign_event(priv, {'kind': kind, 'tags': [], 'content': content})


@pytest.fixture
async def pool():
    pool = RelayPool(publish_timeout=0.05)
    await pool.start()
    yield pool
    await pool.close()


def _attach(pool, url, connected=True):
    worker = FakeWorker(url, connected)
    pool.workers[url] = worker
    return worker


def test_relays_queue_until_started():
    pool = RelayPool(relays=['wss://a.example', ' wss://a.example ', 'wss://b.example'])
    pool.add_relays(['wss://b.example', ''])
    assert pool._pending_urls == ['wss://a.example', 'wss://b.example']
    assert pool.workers == {}


def test_from_config():
    pool = RelayPool.from_config({'relays': ['wss://a.example'], 'network': {'proxy_url': 'http://127.0.0.1:7890', 'proxy_bypass': 'localhost; relay.lan', 'publish_timeout': 3}})
    assert pool._pending_urls == ['wss://a.example']
    assert pool.proxy_bypass == ['localhost', 'relay.lan']
    assert pool.publish_timeout == 3
    assert pool.auto_reconnect is False


def test_resolve_proxy():
    pool = RelayPool(proxy_url='http://127.0.0.1:7890', proxy_bypass=['localhost', 'ws://relay.lan:7000'])
    assert pool.resolve_proxy('wss://relay.damus.io') == 'http://127.0.0.1:7890'
    assert pool.resolve_proxy('ws://localhost:8080') is None
    assert pool.resolve_proxy('wss://sub.relay.lan') is None
    pool.proxy_disabled = True
    assert pool.resolve_proxy('wss://relay.damus.io') is None


async def test_subscribe_sends_req_and_close(pool):
    worker = _attach(pool, 'wss://a.example')
    unsubscribe = pool.subscribe({'kinds': [1]}, lambda e: None)
    await asyncio.sleep(0)
    (sub_id,) = pool.subscriptions
    assert worker.sent == [['REQ', sub_id, {'kinds': [1]}]]
    unsubscribe()
    await asyncio.sleep(0)
    assert worker.sent[-1] == ['CLOSE', sub_id]
    assert pool.subscriptions == {}


async def test_inbound_events_are_verified_filtered_and_deduped(pool):
    worker = _attach(pool, 'wss://a.example')
    got = []
    pool.subscribe({'kinds': [1]}, got.append)
    (sub_id,) = pool.subscriptions
    good = _note()
    forged = dict(_note(), content='edited')
    wrong_kind = _note(kind=7)
    for evt in (good, good, forged, wrong_kind):
        pool._handle_message(worker, json.dumps(['EVENT', sub_id, evt]))
    pool._handle_message(worker, json.dumps(['EVENT', 'unknown-sub', _note()]))
    pool._handle_message(worker, 'not json')
    pool._handle_message(worker, json.dumps(['NOTICE', 'hello']))
    pool._handle_message(worker, json.dumps(['EOSE', sub_id]))
    assert got == [good]


async def test_publish_waits_for_ok(pool):
    worker = _attach(pool, 'wss://a.example')
    evt = _note()
    pool.publish_timeout = 1
    task = asyncio.ensure_future(pool.publish(evt))
    await asyncio.sleep(0)
    assert worker.sent == [['EVENT', evt]]
    pool._handle_message(worker, json.dumps(['OK', evt['id'], True, '']))
    assert await task is True
    assert pool._pending_acks == {}


async def test_publish_rejected_everywhere(pool):
    a = _attach(pool, 'wss://a.example')
    b = _attach(pool, 'wss://b.example')
    evt = _note()
    pool.publish_timeout = 1
    task = asyncio.ensure_future(pool.publish(evt))
    await asyncio.sleep(0)
    pool._handle_message(a, json.dumps(['OK', evt['id'], False, 'blocked: spam']))
    assert not task.done()
    pool._handle_message(b, json.dumps(['OK', evt['id'], False, 'blocked: spam']))
    with pytest.raises(TransportError):
        await task


async def test_publish_without_connected_relay_raises(pool):
    _attach(pool, 'wss://a.example', connected=False)
    with pytest.raises(TransportError):
        await pool.publish(_note())


async def test_publish_without_ok_returns_false(pool):
    _attach(pool, 'wss://a.example')
    assert await pool.publish(_note()) is False


async def test_new_connection_replays_subscriptions_and_unacked_events(pool):
    pool.subscribe({'kinds': [24133]}, lambda e: None)
    (sub_id,) = pool.subscriptions
    evt = _note()
    pool.publish_timeout = 1
    task = asyncio.ensure_future(pool.publish(evt))
    await asyncio.sleep(0)
    late = _attach(pool, 'wss://late.example')
    await pool._on_worker_connected(late)
    assert late.sent == [['REQ', sub_id, {'kinds': [24133]}], ['EVENT', evt]]
    pool._handle_message(late, json.dumps(['OK', evt['id'], True, '']))
    assert await task is True


def test_status_snapshot():
    pool = RelayPool()
    _attach(pool, 'wss://a.example')
    _attach(pool, 'wss://b.example', connected=False)
    snapshot = pool.get_status_snapshot()
    assert snapshot['total'] == 2
    assert snapshot['connected'] == 1
