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


import pytest
from identity_store import IDENTITY_KEY, RECONNECT_KEY, IdentityStore, MemoryStore, SqliteStore
from key_utils import to_nsec
from nip46_client import parse_bunker_uri
from nostr_crypto import NostrCrypto
from signer_errors import DecryptionError


def test_identity_is_created_once_and_persisted():
    backend = MemoryStore()
    store = IdentityStore(backend)
    first = store.get_or_create_identity()
    assert store.get_or_create_identity() is first
    assert backend.get_setting(IDENTITY_KEY) == first.secret_key
    assert NostrCrypto.get_public_key_hex(first.secret_key) == first.public_key
    assert IdentityStore(backend).get_or_create_identity() == first


def test_repr_hides_secret():
    identity = IdentityStore(MemoryStore()).get_or_create_identity()
    assert identity.secret_key not in repr(identity)
    assert identity.public_key in repr(identity)


def test_sqlite_backend(tmp_path):
    db = str(tmp_path / 'client.db')
    backend = SqliteStore(db)
    identity = IdentityStore(backend).get_or_create_identity()
    backend.close()
    reopened = SqliteStore(db)
    try:
        assert IdentityStore(reopened).get_or_create_identity() == identity
        reopened.delete_setting(IDENTITY_KEY)
        assert reopened.get_setting(IDENTITY_KEY, 'gone') == 'gone'
    finally:
        reopened.close()


def test_passphrase_protects_stored_key():
    backend = MemoryStore()
    identity = IdentityStore(backend, passphrase='correct horse').get_or_create_identity()
    stored = backend.get_setting(IDENTITY_KEY)
    assert stored.startswith('{')
    assert identity.secret_key not in stored
    assert IdentityStore(backend, passphrase='correct horse').get_or_create_identity() == identity
    with pytest.raises(DecryptionError):
        IdentityStore(backend, passphrase='wrong').get_or_create_identity()
    with pytest.raises(DecryptionError):
        IdentityStore(backend).get_or_create_identity()


def test_import_identity_accepts_nsec():
    priv = NostrCrypto.generate_private_key_hex()
    store = IdentityStore(MemoryStore())
    identity = store.import_identity(to_nsec(priv))
    assert identity.secret_key == priv
    assert store.get_or_create_identity() == identity
    with pytest.raises(ValueError):
        store.import_identity('nope')


def test_reconnect_uri_drops_secret():
    store = IdentityStore(MemoryStore())
    pub = NostrCrypto.get_public_key_hex(NostrCrypto.generate_private_key_hex())
    store.save_reconnect_uri(parse_bunker_uri(f'bunker://{pub}?relay=wss://relay.example&secret=s3cr3t'))
    saved = store.load_reconnect_uri()
    assert 's3cr3t' not in saved
    locator = parse_bunker_uri(saved)
    assert locator.pubkey == pub
    assert locator.relays == ['wss://relay.example']
    assert locator.secret is None


def test_clear_identity_resets_everything():
    backend = MemoryStore({RECONNECT_KEY: 'bunker://x'})
    store = IdentityStore(backend)
    old = store.get_or_create_identity()
    store.clear_identity()
    assert backend.get_setting(RECONNECT_KEY) is None
    assert store.get_or_create_identity() != old


def test_backend_must_be_injected():
    with pytest.raises(TypeError):
        IdentityStore()
