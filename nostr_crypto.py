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


import os
import json
import time
import base64
import struct
import binascii
from hashlib import sha256
import coincurve
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand
from key_utils import is_hex_key
from signer_errors import DecryptionError

NIP44_VERSION = 2
NIP44_SALT = b'nip44-v2'
MAX_PLAINTEXT_SIZE = 65535
# base64 and raw payload bounds for the smallest (32) and largest (65536) padded blocks
MIN_PAYLOAD_B64 = 132
MAX_PAYLOAD_B64 = 87472
MIN_PAYLOAD_RAW = 99
MAX_PAYLOAD_RAW = 65603


def _calc_padded_len(unpadded_len):
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(data):
    if len(data) > MAX_PLAINTEXT_SIZE:
        raise ValueError(f'plaintext too large: {len(data)} bytes')
    filler = _calc_padded_len(len(data)) - len(data)
    return struct.pack('>H', len(data)) + data + b'\x00' * filler


def _unpad(padded):
    (length,) = struct.unpack('>H', padded[:2])
    data = padded[2:2 + length]
    if len(data) != length or len(padded) != 2 + _calc_padded_len(length):
        raise DecryptionError('invalid padding')
    return data


def _chacha20(key, nonce, data):
    # cryptography takes a 16 byte nonce: 4 byte little-endian block counter + 12 byte nonce
    cipher = Cipher(algorithms.ChaCha20(key, b'\x00' * 4 + nonce), mode=None)
    return cipher.encryptor().update(data)


def _message_keys(conversation_key, nonce):
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return (keys[:32], keys[32:44], keys[44:])


def _mac(hmac_key, nonce, ciphertext):
    h = hmac.HMAC(hmac_key, hashes.SHA256())
    h.update(nonce + ciphertext)
    return h


class NostrCrypto:

    @staticmethod
    def generate_private_key_hex():
        return coincurve.PrivateKey().secret.hex()

    @staticmethod
    def get_public_key_hex(priv_hex):
        try:
            priv = coincurve.PrivateKey(bytes.fromhex(priv_hex))
        except (TypeError, ValueError):
            return None
        return priv.public_key.format(compressed=True)[1:].hex()

    @staticmethod
    def is_valid_pubkey(pub_hex):
        if not is_hex_key(pub_hex):
            return False
        try:
            coincurve.PublicKey(b'\x02' + bytes.fromhex(pub_hex))
        except ValueError:
            return False
        return True

    @staticmethod
    def _shared_x(priv_hex, pub_hex):
        point = coincurve.PublicKey(b'\x02' + bytes.fromhex(pub_hex[-64:]))
        return point.multiply(bytes.fromhex(priv_hex)).format(compressed=True)[1:]

    @staticmethod
    def get_conversation_key(priv_hex, pub_hex):
        """HKDF-extract of the ECDH x coordinate; identical from either side of the pair."""
        h = hmac.HMAC(NIP44_SALT, hashes.SHA256())
        h.update(NostrCrypto._shared_x(priv_hex, pub_hex))
        return h.finalize()

    @staticmethod
    def encrypt_nip44(plaintext, conversation_key, nonce=None):
        if nonce is None:
            nonce = os.urandom(32)
        if len(nonce) != 32:
            raise ValueError('nonce must be 32 bytes')
        chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
        ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext.encode('utf-8')))
        mac = _mac(hmac_key, nonce, ciphertext).finalize()
        payload = bytes([NIP44_VERSION]) + nonce + ciphertext + mac
        return base64.b64encode(payload).decode('ascii')

    @staticmethod
    def decrypt_nip44(payload, conversation_key):
        if not payload or payload[0] == '#':
            raise DecryptionError('unknown encryption version')
        if not MIN_PAYLOAD_B64 <= len(payload) <= MAX_PAYLOAD_B64:
            raise DecryptionError('invalid payload size')
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f'invalid base64: {e}') from e
        if not MIN_PAYLOAD_RAW <= len(raw) <= MAX_PAYLOAD_RAW:
            raise DecryptionError('invalid data size')
        if raw[0] != NIP44_VERSION:
            raise DecryptionError(f'unknown encryption version {raw[0]}')
        nonce, ciphertext, mac = (raw[1:33], raw[33:-32], raw[-32:])
        chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
        try:
            _mac(hmac_key, nonce, ciphertext).verify(mac)
        except InvalidSignature as e:
            raise DecryptionError('invalid MAC') from e
        data = _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
        try:
            return data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecryptionError('plaintext is not valid UTF-8') from e

    @staticmethod
    def encrypt_for(priv_hex, pub_hex, plaintext):
        key = NostrCrypto.get_conversation_key(priv_hex, pub_hex)
        return NostrCrypto.encrypt_nip44(plaintext, key)

    @staticmethod
    def decrypt_from(priv_hex, pub_hex, payload):
        try:
            key = NostrCrypto.get_conversation_key(priv_hex, pub_hex)
        except ValueError as e:
            raise DecryptionError(f'cannot derive conversation key: {e}') from e
        return NostrCrypto.decrypt_nip44(payload, key)

    @staticmethod
    def encrypt_nip04(priv_hex, pub_hex, plaintext):
        key = NostrCrypto._shared_x(priv_hex, pub_hex)
        iv = os.urandom(16)
        padder = padding.PKCS7(128).padder()
        data = padder.update(plaintext.encode('utf-8')) + padder.finalize()
        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return f"{base64.b64encode(ciphertext).decode('ascii')}?iv={base64.b64encode(iv).decode('ascii')}"

    @staticmethod
    def decrypt_nip04(priv_hex, pub_hex, payload):
        try:
            ct_b64, iv_b64 = payload.split('?iv=')
            ciphertext = base64.b64decode(ct_b64, validate=True)
            iv = base64.b64decode(iv_b64, validate=True)
            key = NostrCrypto._shared_x(priv_hex, pub_hex)
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            data = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            return (unpadder.update(data) + unpadder.finalize()).decode('utf-8')
        except (AttributeError, ValueError) as e:
            raise DecryptionError(f'nip04 decrypt failed: {e}') from e

    @staticmethod
    def serialize_event(evt):
        return json.dumps([0, evt['pubkey'], evt['created_at'], evt['kind'], evt['tags'], evt['content']], separators=(',', ':'), ensure_ascii=False)

    @staticmethod
    def compute_event_id(evt):
        return sha256(NostrCrypto.serialize_event(evt).encode('utf-8')).hexdigest()

    @staticmethod
    def sign_event_id(priv_hex, event_id_hex):
        priv = coincurve.PrivateKey(bytes.fromhex(priv_hex))
        return priv.sign_schnorr(bytes.fromhex(event_id_hex), os.urandom(32)).hex()

    @staticmethod
    def sign_event(priv_hex, event):
        evt = {'pubkey': NostrCrypto.get_public_key_hex(priv_hex), 'created_at': event['created_at'] if event.get('created_at') is not None else int(time.time()), 'kind': event['kind'], 'tags': event.get('tags', []), 'content': event.get('content', '')}
        evt['id'] = NostrCrypto.compute_event_id(evt)
        evt['sig'] = NostrCrypto.sign_event_id(priv_hex, evt['id'])
        return evt

    @staticmethod
    def verify_signature(pub_hex, event_id_hex, sig_hex):
        try:
            pub = coincurve.PublicKeyXOnly(bytes.fromhex(pub_hex))
            return pub.verify(bytes.fromhex(sig_hex), bytes.fromhex(event_id_hex))
        except (TypeError, ValueError):
            return False

    @staticmethod
    def verify_event(event):
        try:
            if NostrCrypto.compute_event_id(event) != event['id']:
                return False
            return NostrCrypto.verify_signature(event['pubkey'], event['id'], event['sig'])
        except (KeyError, TypeError):
            return False
