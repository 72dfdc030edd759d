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
import time
import asyncio
import pytest
from identity_store import IdentityStore, MemoryStore
from nip46_client import NIP46_KIND, Nip46Client
from nostr_crypto import NostrCrypto
from transport import InMemoryTransport


class FakeBunker:
    """Remote signer double answering NIP-46 requests over an InMemoryTransport.

    Responses are delivered on the next loop iteration unless ``sync`` is set,
    in which case they arrive before the client's publish() returns.
    """

    def __init__(self, transport, secret=None):
        self.transport = transport
        self.bunker_priv = NostrCrypto.generate_private_key_hex()
        self.bunker_pub = NostrCrypto.get_public_key_hex(self.bunker_priv)
        self.user_priv = NostrCrypto.generate_private_key_hex()
        self.user_pub = NostrCrypto.get_public_key_hex(self.user_priv)
        self.secret = secret
        self.requests = []
        self.authorized = set()
        self.hold = False
        self.sync = False
        self.auth_url = None
        self.connect_result = 'ack'
        self.overrides = {}
        self._peers = {}
        transport.subscribe({'kinds': [NIP46_KIND], '#p': [self.bunker_pub]}, self._on_request)

    def uri(self, secret=None, relays=('wss://relay.example',)):
        query = '&'.join(f'relay={r}' for r in relays)
        if secret:
            query += f'&secret={secret}'
        return f'bunker://{self.bunker_pub}?{query}'

    def methods(self):
        return [method for _, method, _ in self.requests]

    def request_ids(self, method=None):
        return [rid for rid, m, _ in self.requests if method is None or m == method]

    def _on_request(self, event):
        request = json.loads(NostrCrypto.decrypt_from(self.bunker_priv, event['pubkey'], event['content']))
        self.requests.append((request['id'], request['method'], request['params']))
        self._peers[request['id']] = event['pubkey']
        if self.auth_url:
            self.respond(request['id'], result='auth_url', error=self.auth_url)
        if self.hold:
            return
        result, error = self._answer(event['pubkey'], request['method'], request['params'])
        self.respond(request['id'], result=result, error=error)

    def _answer(self, client_pub, method, params):
        if method in self.overrides:
            return (self.overrides[method], None)
        if method == 'connect':
            if self.secret and client_pub not in self.authorized and params[1:2] != [self.secret]:
                return (None, 'invalid secret')
            if self.connect_result == 'ack':
                self.authorized.add(client_pub)
            return (self.connect_result, None)
        if method == 'get_public_key':
            return (self.user_pub, None)
        if method == 'sign_event':
            signed = NostrCrypto.sign_event(self.user_priv, json.loads(params[0]))
            return (json.dumps(signed), None)
        if method == 'nip04_encrypt':
            return (NostrCrypto.encrypt_nip04(self.user_priv, params[0], params[1]), None)
        if method == 'nip04_decrypt':
            return (NostrCrypto.decrypt_nip04(self.user_priv, params[0], params[1]), None)
        if method == 'nip44_encrypt':
            return (NostrCrypto.encrypt_for(self.user_priv, params[0], params[1]), None)
        if method == 'nip44_decrypt':
            return (NostrCrypto.decrypt_from(self.user_priv, params[0], params[1]), None)
        if method == 'ping':
            return ('pong', None)
        return (None, f'unsupported method: {method}')

    def build_response(self, request_id, result=None, error=None):
        client_pub = self._peers[request_id]
        body = {'id': request_id}
        if result is not None:
            body['result'] = result
        if error is not None:
            body['error'] = error
        content = NostrCrypto.encrypt_for(self.bunker_priv, client_pub, json.dumps(body))
        return NostrCrypto.sign_event(self.bunker_priv, {'kind': NIP46_KIND, 'created_at': int(time.time()), 'tags': [['p', client_pub]], 'content': content})

    def respond(self, request_id, result=None, error=None):
        event = self.build_response(request_id, result=result, error=error)
        if self.sync:
            self.transport.inject(event)
        else:
            asyncio.get_running_loop().call_soon(self.transport.inject, event)


async def wait_for_requests(bunker, count):
    for _ in range(100):
        if len(bunker.requests) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f'expected {count} requests, saw {bunker.methods()}')


@pytest.fixture
def transport():
    return InMemoryTransport()


@pytest.fixture
def bunker(transport):
    return FakeBunker(transport, secret='s3cr3t')


@pytest.fixture
def store():
    return IdentityStore(MemoryStore())


@pytest.fixture
def client(transport, store):
    return Nip46Client(transport, store, connect_timeout=1, rpc_timeout=1)


@pytest.fixture
async def connected(client, bunker):
    await client.connect(bunker.uri(secret='s3cr3t'))
    bunker.requests.clear()
    return client
