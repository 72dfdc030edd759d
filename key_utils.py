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

import re

BECH32_ALPHABET = 'qpzry9x8gf2tvdw0s3jn54khce6mua7l'
_GENERATORS = (0x3b6a57b2, 0x26508e6d, 0x1ea119fa, 0x3d4233dd, 0x2a1462b3)
_HEX_KEY_RE = re.compile(r'^[0-9a-fA-F]{64}$')


def _polymod(values):
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1ffffff) << 5 ^ value
        for i, gen in enumerate(_GENERATORS):
            if top >> i & 1:
                chk ^= gen
    return chk


def _expand_hrp(hrp):
    high = [ord(c) >> 5 for c in hrp]
    low = [ord(c) & 31 for c in hrp]
    return high + [0] + low


def _regroup_bits(data, from_bits, to_bits, pad):
    acc = 0
    bits = 0
    out = []
    mask = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            return None
        acc = acc << from_bits | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append(acc >> bits & mask)
    if pad and bits:
        out.append(acc << to_bits - bits & mask)
    elif not pad and (bits >= from_bits or acc << to_bits - bits & mask):
        return None
    return out


def bech32_encode(hrp, payload):
    words = _regroup_bits(payload, 8, 5, True)
    polymod = _polymod(_expand_hrp(hrp) + words + [0] * 6) ^ 1
    checksum = [polymod >> 5 * (5 - i) & 31 for i in range(6)]
    return hrp + '1' + ''.join(BECH32_ALPHABET[w] for w in words + checksum)


def bech32_decode(text):
    """Returns (hrp, payload_bytes) or (None, None) when the string is not valid bech32."""
    if not text or text.lower() != text and text.upper() != text:
        return (None, None)
    text = text.lower()
    sep = text.rfind('1')
    if sep < 1 or sep + 7 > len(text) or len(text) > 90:
        return (None, None)
    hrp, tail = text[:sep], text[sep + 1:]
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        return (None, None)
    if any(c not in BECH32_ALPHABET for c in tail):
        return (None, None)
    words = [BECH32_ALPHABET.index(c) for c in tail]
    if _polymod(_expand_hrp(hrp) + words) != 1:
        return (None, None)
    payload = _regroup_bits(words[:-6], 5, 8, False)
    if payload is None:
        return (None, None)
    return (hrp, bytes(payload))


def is_hex_key(value):
    return isinstance(value, str) and bool(_HEX_KEY_RE.match(value))


def _to_hex(value, expected_hrp):
    if not value:
        return None
    s = value.strip()
    if is_hex_key(s):
        return s.lower()
    if s.lower().startswith(expected_hrp + '1'):
        hrp, payload = bech32_decode(s)
        if hrp == expected_hrp and payload and len(payload) == 32:
            return payload.hex()
    return None


def to_hex_pubkey(value):
    return _to_hex(value, 'npub')


def to_hex_privkey(value):
    return _to_hex(value, 'nsec')


def to_npub(hex_str):
    if not is_hex_key(hex_str):
        return hex_str
    return bech32_encode('npub', bytes.fromhex(hex_str))


def to_nsec(hex_str):
    if not is_hex_key(hex_str):
        return hex_str
    return bech32_encode('nsec', bytes.fromhex(hex_str))


def get_npub_abbr(hex_str):
    if not hex_str:
        return '???'
    full_npub = to_npub(hex_str)
    if len(full_npub) > 16:
        return f'{full_npub[:10]}...{full_npub[-6:]}'
    return full_npub
