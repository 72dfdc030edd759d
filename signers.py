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


import abc
import time
from key_utils import to_hex_privkey
from nostr_crypto import NostrCrypto


class NostrSigner(abc.ABC):
    """What the rest of the app needs from whoever holds the user's key."""

    @abc.abstractmethod
    async def current_user(self):
        """Hex public key of the user being signed for."""

    @abc.abstractmethod
    async def sign(self, event):
        """Signature (hex) over the event's NIP-01 id."""

    @abc.abstractmethod
    async def encrypt(self, peer_pubkey, plaintext):
        ...

    @abc.abstractmethod
    async def decrypt(self, peer_pubkey, ciphertext):
        ...

    async def sign_event(self, event):
        evt = {'pubkey': await self.current_user(), 'created_at': event['created_at'] if event.get('created_at') is not None else int(time.time()), 'kind': event['kind'], 'tags': event.get('tags', []), 'content': event.get('content', '')}
        evt['id'] = NostrCrypto.compute_event_id(evt)
        evt['sig'] = await self.sign(evt)
        return evt


class LocalKeySigner(NostrSigner):

    def __init__(self, priv_key):
        priv_hex = to_hex_privkey(priv_key)
        pub_hex = NostrCrypto.get_public_key_hex(priv_hex) if priv_hex else None
        if not pub_hex:
            raise ValueError('Invalid private key')
        self.priv_hex = priv_hex
        self.pubkey = pub_hex

    @classmethod
    def generate(cls):
        return cls(NostrCrypto.generate_private_key_hex())

    async def current_user(self):
        return self.pubkey

    async def sign(self, event):
        evt = dict(event, pubkey=self.pubkey)
        evt.setdefault('created_at', int(time.time()))
        return NostrCrypto.sign_event_id(self.priv_hex, NostrCrypto.compute_event_id(evt))

    async def encrypt(self, peer_pubkey, plaintext):
        return NostrCrypto.encrypt_nip04(self.priv_hex, peer_pubkey, plaintext)

    async def decrypt(self, peer_pubkey, ciphertext):
        return NostrCrypto.decrypt_nip04(self.priv_hex, peer_pubkey, ciphertext)


class RemoteSigner(NostrSigner):

    def __init__(self, client):
        self.client = client

    async def current_user(self):
        return self.client.user_pubkey

    async def sign(self, event):
        return await self.client.sign(event)

    async def encrypt(self, peer_pubkey, plaintext):
        return await self.client.encrypt(peer_pubkey, plaintext)

    async def decrypt(self, peer_pubkey, ciphertext):
        return await self.client.decrypt(peer_pubkey, ciphertext)
