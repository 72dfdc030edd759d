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
import enum
import logging
import secrets
import itertools
import urllib.parse
from collections import namedtuple
from dataclasses import dataclass
from typing import List, Optional
from key_utils import get_npub_abbr, is_hex_key, to_hex_pubkey
from nostr_crypto import NostrCrypto
from rpc_correlator import PendingRequests
from signer_errors import DecryptionError, DisconnectedError, HandshakeError, InvalidUriError, NotConnectedError, RemoteSignerError, SignerError
from signers import RemoteSigner

logger = logging.getLogger(__name__)

NIP46_KIND = 24133
DEFAULT_CONNECT_TIMEOUT = 300
DEFAULT_RPC_TIMEOUT = 30


class SessionState(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AWAITING_APPROVAL = 'awaiting_approval'
    CONNECTED = 'connected'


class BunkerLocator(namedtuple('BunkerLocator', ['pubkey', 'relays', 'secret'])):
    __slots__ = ()

    def to_uri(self, include_secret=True):
        query = [('relay', r) for r in self.relays]
        if include_secret and self.secret:
            query.append(('secret', self.secret))
        uri = f'bunker://{self.pubkey}'
        if query:
            uri += '?' + urllib.parse.urlencode(query)
        return uri


def parse_bunker_uri(uri):
    """bunker://<hex-or-npub>?relay=wss://...&relay=...&secret=..."""
    if not isinstance(uri, str):
        raise InvalidUriError('Invalid bunker URI: expected a string')
    parsed = urllib.parse.urlsplit(uri.strip())
    if parsed.scheme != 'bunker':
        raise InvalidUriError(f'Invalid bunker URI scheme: {parsed.scheme!r}')
    pubkey = to_hex_pubkey(parsed.netloc or parsed.path.lstrip('/'))
    if not pubkey:
        raise InvalidUriError('Invalid bunker URI: missing pubkey')
    params = urllib.parse.parse_qs(parsed.query)
    relays = []
    for relay in params.get('relay', []):
        relay = relay.strip()
        if relay and relay not in relays:
            relays.append(relay)
    secret = params.get('secret', [''])[0].strip() or None
    return BunkerLocator(pubkey, relays, secret)


@dataclass
class BunkerSession:
    bunker_pubkey: str
    relay_hints: List[str]
    secret: Optional[str]
    client_pubkey: str
    user_pubkey: Optional[str] = None


class Nip46Client:
    """NIP-46 client: the user's key stays with the remote signer, this side only holds a client key."""

    def __init__(self, transport, identity_store, connect_timeout=DEFAULT_CONNECT_TIMEOUT, rpc_timeout=DEFAULT_RPC_TIMEOUT, on_auth_url=None):
        self.transport = transport
        self.identity_store = identity_store
        identity = self.identity_store.get_or_create_identity()
        self.client_secret = identity.secret_key
        self.client_pubkey = identity.public_key
        self.connect_timeout = connect_timeout
        self.rpc_timeout = rpc_timeout
        self.on_auth_url = on_auth_url
        self.on_state_change = None
        self.state = SessionState.DISCONNECTED
        self.session = None
        self.pending = PendingRequests()
        self._unsubscribe = None
        self._id_prefix = secrets.token_hex(4)
        self._id_seq = itertools.count(1)

    @classmethod
    def from_config(cls, transport, identity_store, conf, on_auth_url=None):
        signer_conf = conf.get('signer', {})
        return cls(transport, identity_store, connect_timeout=signer_conf.get('connect_timeout', DEFAULT_CONNECT_TIMEOUT), rpc_timeout=signer_conf.get('rpc_timeout', DEFAULT_RPC_TIMEOUT), on_auth_url=on_auth_url)

    @property
    def user_pubkey(self):
        if self.session is None or not self.session.user_pubkey:
            raise NotConnectedError('Not connected - call connect() first')
        return self.session.user_pubkey

    @property
    def bunker_pubkey(self):
        return self.session.bunker_pubkey if self.session else None

    @property
    def pending_count(self):
        return len(self.pending)

    def _set_state(self, new_state):
        if self.state is new_state:
            return
        logger.debug('[Signer] State %s -> %s', self.state.value, new_state.value)
        self.state = new_state
        if self.on_state_change:
            self.on_state_change(new_state)

    async def connect(self, uri):
        locator = uri if isinstance(uri, BunkerLocator) else parse_bunker_uri(uri)
        if self.state is not SessionState.DISCONNECTED:
            raise SignerError(f'Session is {self.state.value}; call disconnect() first')
        logger.info('🔗 [Signer] Connecting to bunker %s via %d relay(s), secret=%s', get_npub_abbr(locator.pubkey), len(locator.relays), bool(locator.secret))
        self.session = BunkerSession(locator.pubkey, list(locator.relays), locator.secret, self.client_pubkey)
        self._set_state(SessionState.CONNECTING)
        try:
            user_pubkey = await self._handshake(locator)
        except BaseException:
            # cancellation too, or the session stays CONNECTING
            self._teardown()
            raise
        self.session.user_pubkey = user_pubkey
        self._set_state(SessionState.CONNECTED)
        self.identity_store.save_reconnect_uri(locator)
        logger.info('✅ [Signer] Connected to bunker; user %s', get_npub_abbr(user_pubkey))
        return user_pubkey

    async def _handshake(self, locator):
        self.transport.add_relays(locator.relays)
        self._subscribe_to_responses()
        params = [locator.pubkey, locator.secret] if locator.secret else [locator.pubkey]
        try:
            result = await self.rpc('connect', params, timeout=self.connect_timeout)
        except SignerError as e:
            raise HandshakeError(f'Connect handshake failed: {e}') from e
        if result != 'ack':
            raise HandshakeError(f"Connect failed: expected 'ack', got {result!r}")
        self._set_state(SessionState.CONNECTING)
        try:
            user_pubkey = await self.rpc('get_public_key', [])
        except SignerError as e:
            raise HandshakeError(f'get_public_key after connect failed: {e}') from e
        if not isinstance(user_pubkey, str) or not is_hex_key(user_pubkey):
            raise HandshakeError(f'Remote signer returned an invalid public key: {user_pubkey!r}')
        return user_pubkey.lower()

    async def reconnect(self):
        uri = self.identity_store.load_reconnect_uri()
        if not uri:
            raise NotConnectedError('No saved bunker connection to resume')
        return await self.connect(uri)

    def _subscribe_to_responses(self):
        flt = {'kinds': [NIP46_KIND], '#p': [self.client_pubkey]}
        self._unsubscribe = self.transport.subscribe(flt, self._handle_response_event)

    def _handle_response_event(self, event):
        try:
            plaintext = NostrCrypto.decrypt_from(self.client_secret, event['pubkey'], event['content'])
            response = json.loads(plaintext)
        except (DecryptionError, KeyError, TypeError, ValueError) as e:
            logger.debug('[Signer] Ignoring undecryptable event %s: %s', event.get('id'), e)
            return
        if not isinstance(response, dict) or 'id' not in response:
            logger.debug('[Signer] Ignoring malformed response in event %s', event.get('id'))
            return
        request_id = response['id']
        result = response.get('result')
        error = response.get('error')
        if result == 'auth_url' and isinstance(error, str) and error:
            logger.info('🔗 [Signer] Approval required for request %s: %s', request_id, error)
            if self.state is SessionState.CONNECTING and request_id in self.pending:
                self._set_state(SessionState.AWAITING_APPROVAL)
            if self.on_auth_url:
                try:
                    self.on_auth_url(error)
                except Exception:
                    logger.exception('❌ [Signer] auth_url callback failed')
            return
        if request_id not in self.pending:
            logger.debug('[Signer] Dropping response for unknown id %s', request_id)
            return
        if error:
            self.pending.reject(request_id, RemoteSignerError(str(error), request_id))
        elif result is not None:
            self.pending.resolve(request_id, result)
        else:
            self.pending.reject(request_id, RemoteSignerError('Invalid response: no result or error', request_id))

    def _next_request_id(self):
        return f'{self._id_prefix}{next(self._id_seq)}'

    async def rpc(self, method, params, timeout=None):
        if self.session is None:
            raise NotConnectedError('Not connected - call connect() first')
        if timeout is None:
            timeout = self.rpc_timeout
        request_id = self._next_request_id()
        bunker_pubkey = self.session.bunker_pubkey
        request = {'id': request_id, 'method': method, 'params': list(params)}
        # the entry must exist before publish returns; an immediate reply would otherwise be dropped
        future = self.pending.register(request_id, method, timeout)
        try:
            content = NostrCrypto.encrypt_for(self.client_secret, bunker_pubkey, json.dumps(request, ensure_ascii=False))
            event = NostrCrypto.sign_event(self.client_secret, {'kind': NIP46_KIND, 'created_at': int(time.time()), 'tags': [['p', bunker_pubkey]], 'content': content})
            logger.debug('📤 [Signer] Sending RPC %s (id=%s)', method, request_id)
            await self.transport.publish(event)
        except BaseException:
            self.pending.discard(request_id)
            if future.done() and not future.cancelled():
                future.exception()
            raise
        return await future

    async def sign_event(self, event):
        result = await self.rpc('sign_event', [json.dumps(event, ensure_ascii=False)])
        try:
            signed = json.loads(result)
        except (TypeError, ValueError) as e:
            raise RemoteSignerError(f'sign_event returned invalid JSON: {e}') from e
        if not isinstance(signed, dict) or not signed.get('sig'):
            raise RemoteSignerError('sign_event returned an event without a signature')
        return signed

    async def sign(self, event):
        signed = await self.sign_event(event)
        return signed['sig']

    async def encrypt(self, peer_pubkey, plaintext):
        return await self.rpc('nip04_encrypt', [peer_pubkey, plaintext])

    async def decrypt(self, peer_pubkey, ciphertext):
        return await self.rpc('nip04_decrypt', [peer_pubkey, ciphertext])

    async def nip44_encrypt(self, peer_pubkey, plaintext):
        return await self.rpc('nip44_encrypt', [peer_pubkey, plaintext])

    async def nip44_decrypt(self, peer_pubkey, ciphertext):
        return await self.rpc('nip44_decrypt', [peer_pubkey, ciphertext])

    async def ping(self):
        return await self.rpc('ping', [])

    def as_signer(self):
        return RemoteSigner(self)

    def disconnect(self):
        if self.session is None and self._unsubscribe is None:
            return
        logger.info('👋 [Signer] Disconnecting...')
        self._teardown()

    def _teardown(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        rejected = self.pending.reject_all(lambda: DisconnectedError('Session disconnected'))
        if rejected:
            logger.info('[Signer] Rejected %d pending request(s)', rejected)
        self.session = None
        self._set_state(SessionState.DISCONNECTED)
