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


import ssl
import json
import asyncio
import logging
import secrets
import urllib.parse
from collections import deque
import aiohttp
import certifi
from nostr_crypto import NostrCrypto
from signer_errors import TransportError
from transport import Transport, match_filter, normalize_filters

logger = logging.getLogger(__name__)

DEFAULT_RELAYS = ['wss://relay.nsec.app', 'wss://relay.damus.io', 'wss://relay.primal.net']
STATUS_DISCONNECTED = 0
STATUS_CONNECTING = 1
STATUS_CONNECTED = 2
MAX_SEEN_PER_SUB = 2000


class AsyncRelayWorker:

    def __init__(self, url, pool):
        self.url = url
        self.pool = pool
        self.ws = None
        self.status = STATUS_DISCONNECTED
        self.should_exit = False
        self.task = None

    async def connect_loop(self, session):
        logger.info('🔧 [Worker] Starting loop for: %s', self.url)
        while not self.should_exit:
            self._update_status(STATUS_CONNECTING)
            try:
                final_ssl = self.pool.ssl_context if self.url.startswith('wss://') else True
                async with session.ws_connect(self.url, heartbeat=30, proxy=self.pool.resolve_proxy(self.url), ssl=final_ssl) as ws:
                    self.ws = ws
                    self._update_status(STATUS_CONNECTED)
                    logger.info('✅ [Net] Connected: %s', self.url)
                    await self.pool._on_worker_connected(self)
                    async for msg in ws:
                        if self.should_exit:
                            break
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            self.pool._handle_message(self, msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            break
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                logger.warning('⚠️ [Net] %s connection error: %s', self.url, e)
            finally:
                self.ws = None
                self._update_status(STATUS_DISCONNECTED)
            if self.should_exit or not self.pool.auto_reconnect:
                break
            await asyncio.sleep(self.pool.reconnect_delay)
        logger.info('🔌 [Worker] Loop finished for: %s', self.url)

    async def send_str(self, data):
        if self.ws is not None and not self.ws.closed:
            try:
                await self.ws.send_str(data)
                return True
            except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
                logger.warning('⚠️ [Net] Send to %s failed: %s', self.url, e)
        return False

    def _update_status(self, new_status):
        if self.status != new_status:
            self.status = new_status
            self.pool._notify_status_change()

    def is_connected(self):
        return self.status == STATUS_CONNECTED

    def stop(self):
        self.should_exit = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


class RelayPool(Transport):
    """aiohttp websocket pool speaking NIP-01 to every configured relay."""

    def __init__(self, relays=None, proxy_url='', proxy_disabled=False, proxy_bypass=None, auto_reconnect=False, reconnect_delay=5, publish_timeout=10):
        self.workers = {}
        self.subscriptions = {}
        self.proxy_url = proxy_url
        self.proxy_disabled = proxy_disabled
        self.proxy_bypass = list(proxy_bypass or [])
        self.auto_reconnect = auto_reconnect
        self.reconnect_delay = reconnect_delay
        self.publish_timeout = publish_timeout
        self.on_status_callback = None
        self.session = None
        self.ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._pending_urls = []
        self._pending_acks = {}
        self._tasks = set()
        self.add_relays(relays or [])

    @classmethod
    def from_config(cls, conf):
        net = conf.get('network', {})
        bypass = net.get('proxy_bypass', [])
        if isinstance(bypass, str):
            bypass = [x.strip() for x in bypass.replace(';', ',').split(',') if x.strip()]
        return cls(relays=conf.get('relays'), proxy_url=net.get('proxy_url', ''), proxy_disabled=bool(net.get('proxy_disabled', False)), proxy_bypass=bypass, auto_reconnect=bool(net.get('auto_reconnect', False)), reconnect_delay=net.get('reconnect_delay', 5), publish_timeout=net.get('publish_timeout', 10))

    async def start(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(trust_env=False)
        urls, self._pending_urls = (self._pending_urls, [])
        for url in urls:
            self._start_worker(url)

    async def close(self):
        for w in list(self.workers.values()):
            w.stop()
        tasks = [w.task for w in self.workers.values() if w.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.workers.clear()
        if self.session is not None:
            await self.session.close()
            self.session = None

    def add_relays(self, urls):
        for url in urls:
            clean_url = url.strip()
            if not clean_url or clean_url in self.workers or clean_url in self._pending_urls:
                continue
            if self.session is None:
                self._pending_urls.append(clean_url)
            else:
                self._start_worker(clean_url)

    def _start_worker(self, url):
        if url in self.workers:
            return
        worker = AsyncRelayWorker(url, self)
        self.workers[url] = worker
        worker.task = asyncio.get_running_loop().create_task(worker.connect_loop(self.session))

    def resolve_proxy(self, url):
        if self.proxy_disabled or not self.proxy_url:
            return None
        target_hostname = urllib.parse.urlparse(url).hostname or ''
        for rule in self.proxy_bypass:
            rule = rule.strip()
            if not rule:
                continue
            if '://' in rule:
                rule_host = rule.split('://')[1].split('/')[0].split(':')[0]
            else:
                rule_host = rule.split(':')[0]
            if target_hostname == rule_host or target_hostname.endswith('.' + rule_host):
                return None
        return self.proxy_url

    def connected_workers(self):
        return [w for w in self.workers.values() if w.is_connected()]

    async def publish(self, event):
        if self.session is None:
            await self.start()
        ack = asyncio.get_running_loop().create_future()
        self._pending_acks[event['id']] = {'event': event, 'future': ack, 'rejected': set()}
        msg = json.dumps(['EVENT', event])
        try:
            for w in self.connected_workers():
                await w.send_str(msg)
            return await asyncio.wait_for(ack, self.publish_timeout)
        except asyncio.TimeoutError:
            if not self.connected_workers():
                raise TransportError(f'No relay connected within {self.publish_timeout}s') from None
            logger.warning('⚠️ [Net] No OK for event %s within %ss', event['id'][:8], self.publish_timeout)
            return False
        finally:
            self._pending_acks.pop(event['id'], None)

    def subscribe(self, filters, on_event):
        sub_id = f'bunker-{secrets.token_hex(6)}'
        flts = normalize_filters(filters)
        self.subscriptions[sub_id] = {'filters': flts, 'on_event': on_event, 'seen': set(), 'order': deque()}
        self._broadcast_nowait(json.dumps(['REQ', sub_id] + flts))

        def unsubscribe():
            if self.subscriptions.pop(sub_id, None) is not None:
                self._broadcast_nowait(json.dumps(['CLOSE', sub_id]))
        return unsubscribe

    def _broadcast_nowait(self, message):
        for w in self.connected_workers():
            task = asyncio.get_running_loop().create_task(w.send_str(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _on_worker_connected(self, worker):
        for sub_id, sub in list(self.subscriptions.items()):
            await worker.send_str(json.dumps(['REQ', sub_id] + sub['filters']))
        for entry in list(self._pending_acks.values()):
            await worker.send_str(json.dumps(['EVENT', entry['event']]))

    def _handle_message(self, worker, data):
        try:
            msg = json.loads(data)
        except ValueError:
            logger.debug('[Net] Non-JSON frame from %s', worker.url)
            return
        if not isinstance(msg, list) or len(msg) < 2:
            return
        msg_type = msg[0]
        if msg_type == 'EVENT' and len(msg) >= 3:
            self._dispatch_event(worker, msg[1], msg[2])
        elif msg_type == 'OK' and len(msg) >= 3:
            self._handle_ok(worker, msg[1], bool(msg[2]), msg[3] if len(msg) > 3 else '')
        elif msg_type == 'EOSE':
            logger.debug('[Relay] EOSE %s from %s', msg[1], worker.url)
        elif msg_type == 'NOTICE':
            logger.info('📢 [Relay] %s: %s', worker.url, msg[1])
        elif msg_type == 'CLOSED':
            logger.warning('⚠️ [Relay] %s closed subscription %s: %s', worker.url, msg[1], msg[2] if len(msg) > 2 else '')

    def _dispatch_event(self, worker, sub_id, event):
        sub = self.subscriptions.get(sub_id)
        if sub is None or not isinstance(event, dict):
            return
        eid = event.get('id')
        if eid in sub['seen']:
            return
        if not NostrCrypto.verify_event(event):
            logger.warning('⚠️ [Net] Dropping event with bad id/signature from %s', worker.url)
            return
        if not any(match_filter(event, flt) for flt in sub['filters']):
            return
        sub['seen'].add(eid)
        sub['order'].append(eid)
        if len(sub['order']) > MAX_SEEN_PER_SUB:
            sub['seen'].discard(sub['order'].popleft())
        try:
            sub['on_event'](event)
        except Exception:
            logger.exception('❌ [Net] Subscriber %s failed on event %s', sub_id, eid)

    def _handle_ok(self, worker, event_id, accepted, message):
        entry = self._pending_acks.get(event_id)
        if entry is None or entry['future'].done():
            return
        if accepted:
            entry['future'].set_result(True)
            return
        logger.warning('⚠️ [Relay] %s rejected %s: %s', worker.url, event_id[:8], message)
        entry['rejected'].add(worker.url)
        if entry['rejected'] >= set(self.workers):
            entry['future'].set_exception(TransportError(f'Event rejected by all relays: {message}'))

    def _notify_status_change(self):
        if self.on_status_callback:
            self.on_status_callback(self.get_status_snapshot())

    def get_status_snapshot(self):
        details = [{'url': url, 'status': w.status} for url, w in self.workers.items()]
        connected_count = sum(1 for d in details if d['status'] == STATUS_CONNECTED)
        return {'total': len(details), 'connected': connected_count, 'details': details}
