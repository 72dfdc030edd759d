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



class SignerError(Exception):
    pass


class InvalidUriError(SignerError, ValueError):
    pass


class HandshakeError(SignerError):
    pass


class NotConnectedError(SignerError):
    pass


class DisconnectedError(SignerError):
    pass


class RpcTimeoutError(SignerError):

    def __init__(self, request_id, method, timeout):
        super().__init__(f'RPC timeout after {timeout}s: {method} (id={request_id})')
        self.request_id = request_id
        self.method = method
        self.timeout = timeout


class RemoteSignerError(SignerError):

    def __init__(self, message, request_id=None):
        super().__init__(message)
        self.request_id = request_id


class DecryptionError(SignerError):
    pass


class TransportError(SignerError):
    pass
