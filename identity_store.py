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
import logging
import sqlite3
import threading
from collections import namedtuple
import nacl.exceptions
import nacl.pwhash
import nacl.secret
import nacl.utils
from key_utils import get_npub_abbr, to_hex_privkey
from nostr_crypto import NostrCrypto
from signer_errors import DecryptionError

logger = logging.getLogger(__name__)

IDENTITY_KEY = 'nip46_client_key'
RECONNECT_KEY = 'nip46_reconnect_uri'


class ClientIdentity(namedtuple('ClientIdentity', ['secret_key', 'public_key'])):
    __slots__ = ()

    def __repr__(self):
        return f'ClientIdentity(public_key={self.public_key!r})'


class MemoryStore:

    def __init__(self, initial=None):
        self.values = dict(initial or {})

    def get_setting(self, key, default=None):
        return self.values.get(key, default)

    def set_setting(self, key, value):
        self.values[key] = str(value)

    def delete_setting(self, key):
        self.values.pop(key, None)


class SqliteStore:

    def __init__(self, db_name='bunkerchat.db'):
        self.conn = sqlite3.connect(db_name, check_same_thread=False)
        self.lock = threading.Lock()
        self._init_tables()

    def _init_tables(self):
        with self.lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute('CREATE TABLE IF NOT EXISTS system_settings (key TEXT PRIMARY KEY, value TEXT)')
                self.conn.commit()
            finally:
                cursor.close()

    def get_setting(self, key, default=None):
        with self.lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute('SELECT value FROM system_settings WHERE key = ?', (key,))
                row = cursor.fetchone()
                return row[0] if row else default
            finally:
                cursor.close()

    def set_setting(self, key, value):
        with self.lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute('INSERT OR REPLACE INTO system_settings (key, value) VALUES (?, ?)', (key, str(value)))
                self.conn.commit()
            finally:
                cursor.close()

    def delete_setting(self, key):
        with self.lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute('DELETE FROM system_settings WHERE key = ?', (key,))
                self.conn.commit()
            finally:
                cursor.close()

    def close(self):
        with self.lock:
            self.conn.close()


def _derive_box(passphrase, salt):
    secret_key = nacl.pwhash.argon2i.kdf(nacl.secret.SecretBox.KEY_SIZE, passphrase.encode('utf-8'), salt, opslimit=nacl.pwhash.argon2i.OPSLIMIT_INTERACTIVE, memlimit=nacl.pwhash.argon2i.MEMLIMIT_INTERACTIVE)
    return nacl.secret.SecretBox(secret_key)


class IdentityStore:
    """Owns the client's own keypair (the key the remote signer talks to, not the user's key)."""

    def __init__(self, backend, passphrase=None):
        self.backend = backend
        self.passphrase = passphrase
        self._identity = None

    def get_or_create_identity(self):
        if self._identity:
            return self._identity
        stored = self.backend.get_setting(IDENTITY_KEY)
        if stored:
            priv_hex = self._decode_secret(stored)
            pub_hex = NostrCrypto.get_public_key_hex(priv_hex)
            if not pub_hex:
                raise DecryptionError('Stored client key is not a valid secp256k1 secret')
            logger.info('🔑 [Store] Loaded persisted client key: %s', get_npub_abbr(pub_hex))
        else:
            priv_hex = NostrCrypto.generate_private_key_hex()
            pub_hex = NostrCrypto.get_public_key_hex(priv_hex)
            self.backend.set_setting(IDENTITY_KEY, self._encode_secret(priv_hex))
            logger.info('🔑 [Store] Generated new client key: %s', get_npub_abbr(pub_hex))
        self._identity = ClientIdentity(priv_hex, pub_hex)
        return self._identity

    def import_identity(self, value):
        priv_hex = to_hex_privkey(value)
        pub_hex = NostrCrypto.get_public_key_hex(priv_hex) if priv_hex else None
        if not pub_hex:
            raise ValueError('Invalid private key (expected 64 hex chars or nsec1...)')
        self.backend.set_setting(IDENTITY_KEY, self._encode_secret(priv_hex))
        self._identity = ClientIdentity(priv_hex, pub_hex)
        logger.info('🔑 [Store] Imported client key: %s', get_npub_abbr(pub_hex))
        return self._identity

    def clear_identity(self):
        self.backend.delete_setting(IDENTITY_KEY)
        self.backend.delete_setting(RECONNECT_KEY)
        self._identity = None
        logger.info('🧹 [Store] Client identity cleared')

    def save_reconnect_uri(self, locator):
        self.backend.set_setting(RECONNECT_KEY, locator.to_uri(include_secret=False))

    def load_reconnect_uri(self):
        return self.backend.get_setting(RECONNECT_KEY)

    def _encode_secret(self, priv_hex):
        if not self.passphrase:
            return priv_hex
        salt = nacl.utils.random(nacl.pwhash.argon2i.SALTBYTES)
        nonce = nacl.utils.random(nacl.secret.SecretBox.NONCE_SIZE)
        ciphertext = _derive_box(self.passphrase, salt).encrypt(priv_hex.encode('utf-8'), nonce).ciphertext
        return json.dumps({'salt': salt.hex(), 'nonce': nonce.hex(), 'ciphertext': ciphertext.hex()})

    def _decode_secret(self, stored):
        if not stored.startswith('{'):
            return stored
        if not self.passphrase:
            raise DecryptionError('Client key is passphrase protected')
        try:
            blob = json.loads(stored)
            salt = bytes.fromhex(blob['salt'])
            nonce = bytes.fromhex(blob['nonce'])
            ciphertext = bytes.fromhex(blob['ciphertext'])
            return _derive_box(self.passphrase, salt).decrypt(ciphertext, nonce).decode('utf-8')
        except nacl.exceptions.CryptoError as e:
            raise DecryptionError('Wrong passphrase for stored client key') from e
        except (KeyError, ValueError) as e:
            raise DecryptionError(f'Corrupt client key blob: {e}') from e
