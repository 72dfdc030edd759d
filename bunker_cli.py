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


import sys
import json
import asyncio
import argparse
import webbrowser
from identity_store import IdentityStore, SqliteStore
from key_utils import to_npub
from nip46_client import Nip46Client, parse_bunker_uri
from relay_pool import RelayPool
from signer_config import load_config, setup_logging
from signer_errors import NotConnectedError, SignerError


def build_parser():
    parser = argparse.ArgumentParser(prog='bunkerchat', description='Nostr remote signer (NIP-46) client')
    parser.add_argument('--config', help='path to bunkerchat.json')
    parser.add_argument('--db', help='sqlite file holding the client key')
    parser.add_argument('--passphrase', help='encrypt the stored client key with this passphrase')
    parser.add_argument('--log-level', help='DEBUG, INFO, WARNING...')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('identity', help='show the client public key')
    sub.add_parser('reset', help='forget the client key and saved bunker')
    p = sub.add_parser('connect', help='connect to a bunker:// URI')
    p.add_argument('uri')
    p.add_argument('--sign', metavar='TEXT', help='sign a kind-1 note with TEXT after connecting')
    p = sub.add_parser('reconnect', help='reconnect to the last bunker')
    p.add_argument('--sign', metavar='TEXT', help='sign a kind-1 note with TEXT after connecting')
    return parser


def open_auth_url(url):
    print(f'🔗 Approval required, opening: {url}')
    webbrowser.open(url)


async def run_session(conf, store, uri=None, sign_text=None):
    if uri is None:
        uri = store.load_reconnect_uri()
        if not uri:
            raise NotConnectedError("No saved bunker connection, use 'connect' first")
    locator = parse_bunker_uri(uri)
    pool = RelayPool.from_config(conf)
    client = Nip46Client.from_config(pool, store, conf, on_auth_url=open_auth_url)
    try:
        await pool.start()
        user_pubkey = await client.connect(locator)
        print(f'👤 User: {user_pubkey}\n   {to_npub(user_pubkey)}')
        if sign_text is not None:
            signed = await client.as_signer().sign_event({'kind': 1, 'content': sign_text, 'tags': []})
            print(json.dumps(signed, ensure_ascii=False))
    finally:
        client.disconnect()
        await pool.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    conf = load_config(args.config)
    setup_logging(args.log_level or conf['logging']['level'])
    backend = SqliteStore(args.db or conf['storage']['db_file'])
    store = IdentityStore(backend, passphrase=args.passphrase)
    try:
        if args.command == 'identity':
            identity = store.get_or_create_identity()
            print(f'🔑 Client: {identity.public_key}\n   {to_npub(identity.public_key)}')
            saved = store.load_reconnect_uri()
            if saved:
                print(f'🔗 Saved bunker: {saved}')
            return 0
        if args.command == 'reset':
            store.clear_identity()
            print('🧹 Client identity cleared')
            return 0
        asyncio.run(run_session(conf, store, getattr(args, 'uri', None), args.sign))
        return 0
    except SignerError as e:
        print(f'❌ {e}', file=sys.stderr)
        return 1
    finally:
        backend.close()


if __name__ == '__main__':
    sys.exit(main())
