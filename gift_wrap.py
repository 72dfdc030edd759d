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
import logging
import secrets
from collections import deque, namedtuple
from nostr_crypto import NostrCrypto
from signer_errors import DecryptionError

logger = logging.getLogger(__name__)

RUMOR_KIND = 14
SEAL_KIND = 13
GIFT_WRAP_KIND = 1059
TIMESTAMP_WINDOW = 2 * 24 * 60 * 60

UnwrappedMessage = namedtuple('UnwrappedMessage', ['content', 'sender_pubkey', 'timestamp', 'kind', 'tags', 'rumor_id'])
WrappedDM = namedtuple('WrappedDM', ['recipient_wrap', 'sender_wrap', 'rumor'])


def randomize_timestamp(now=None):
    """A timestamp in (now - 2 days, now]."""
    if now is None:
        now = int(time.time())
    return now - secrets.randbelow(TIMESTAMP_WINDOW)


def _dump_inner(event):
    return json.dumps(['EVENT', event], separators=(',', ':'), ensure_ascii=False)


def _load_inner(payload):
    data = json.loads(payload)
    if isinstance(data, list) and len(data) == 2 and data[0] == 'EVENT':
        data = data[1]
    if not isinstance(data, dict):
        raise ValueError('inner event is not an object')
    return data


def create_rumor(content, sender_pubkey, recipients, reply_to=None, extra_tags=None):
    tags = [['p', r] for r in recipients]
    if reply_to:
        tags.append(['e', reply_to, '', 'reply'])
    tags.extend(extra_tags or [])
    rumor = {'pubkey': sender_pubkey, 'created_at': randomize_timestamp(), 'kind': RUMOR_KIND, 'tags': tags, 'content': content}
    rumor['id'] = NostrCrypto.compute_event_id(rumor)
    return rumor


def create_seal(rumor, sender_priv, recipient_pubkey):
    # unsigned: the sender is authenticated by the conversation key, never by a signature
    return {'pubkey': NostrCrypto.get_public_key_hex(sender_priv), 'created_at': randomize_timestamp(), 'kind': SEAL_KIND, 'tags': [], 'content': NostrCrypto.encrypt_for(sender_priv, recipient_pubkey, _dump_inner(rumor))}


def create_gift_wrap(seal, recipient_pubkey):
    ephemeral_priv = NostrCrypto.generate_private_key_hex()
    content = NostrCrypto.encrypt_for(ephemeral_priv, recipient_pubkey, _dump_inner(seal))
    wrap = NostrCrypto.sign_event(ephemeral_priv, {'kind': GIFT_WRAP_KIND, 'created_at': randomize_timestamp(), 'tags': [['p', recipient_pubkey]], 'content': content})
    del ephemeral_priv
    return wrap


def create_gift_wrapped_dm(content, recipient_pubkey, sender_priv, reply_to=None):
    """Wraps one message twice: for the recipient and an outbox copy for the sender.

    Each copy gets its own seal so both parties can peel their copy.
    """
    sender_pub = NostrCrypto.get_public_key_hex(sender_priv)
    rumor = create_rumor(content, sender_pub, [recipient_pubkey], reply_to=reply_to)
    recipient_wrap = create_gift_wrap(create_seal(rumor, sender_priv, recipient_pubkey), recipient_pubkey)
    sender_wrap = create_gift_wrap(create_seal(rumor, sender_priv, sender_pub), sender_pub)
    return WrappedDM(recipient_wrap, sender_wrap, rumor)


async def send_private_message(transport, content, recipient_pubkey, sender_priv, reply_to=None):
    wrapped = create_gift_wrapped_dm(content, recipient_pubkey, sender_priv, reply_to=reply_to)
    await transport.publish(wrapped.recipient_wrap)
    await transport.publish(wrapped.sender_wrap)
    logger.info('📨 [GiftWrap] Sent message %s', wrapped.rumor['id'][:8])
    return wrapped


def unwrap_gift_wrap(event, receiver_priv):
    """Peels wrap and seal. Returns an UnwrappedMessage, or None when the event is not for us or is malformed."""
    try:
        if event.get('kind') != GIFT_WRAP_KIND:
            logger.debug('[GiftWrap] Not a gift wrap: kind %s', event.get('kind'))
            return None
        if not NostrCrypto.verify_event(event):
            logger.debug('[GiftWrap] Bad wrap signature on %s', event.get('id'))
            return None
        seal = _load_inner(NostrCrypto.decrypt_from(receiver_priv, event['pubkey'], event['content']))
        if seal.get('kind') != SEAL_KIND:
            logger.debug('[GiftWrap] Invalid seal kind: %s', seal.get('kind'))
            return None
        rumor = _load_inner(NostrCrypto.decrypt_from(receiver_priv, seal['pubkey'], seal['content']))
        if rumor.get('kind') != RUMOR_KIND:
            logger.debug('[GiftWrap] Invalid rumor kind: %s', rumor.get('kind'))
            return None
        if rumor.get('pubkey') != seal['pubkey']:
            logger.warning('⚠️ [GiftWrap] Rumor author does not match seal author in %s', event.get('id'))
            return None
        return UnwrappedMessage(rumor['content'], rumor['pubkey'], rumor['created_at'], rumor['kind'], rumor.get('tags', []), rumor.get('id'))
    except (DecryptionError, AttributeError, KeyError, TypeError, ValueError) as e:
        logger.debug('[GiftWrap] Unwrap failed: %s', e)
        return None


def subscribe_private_messages(transport, receiver_priv, on_message, since=None):
    """Subscribes to gift wraps addressed to receiver_priv's key; on_message gets each new UnwrappedMessage once."""
    my_pub = NostrCrypto.get_public_key_hex(receiver_priv)
    flt = {'kinds': [GIFT_WRAP_KIND], '#p': [my_pub]}
    if since is not None:
        flt['since'] = since
    seen = set()
    order = deque()

    def _on_event(event):
        msg = unwrap_gift_wrap(event, receiver_priv)
        if msg is None:
            return
        key = msg.rumor_id or event.get('id')
        if key in seen:
            return
        seen.add(key)
        order.append(key)
        if len(order) > 2000:
            seen.discard(order.popleft())
        on_message(msg)
    return transport.subscribe(flt, _on_event)


def extract_recipients(tags):
    return [t[1] for t in tags if len(t) >= 2 and t[0] == 'p']


def extract_thread_tags(tags):
    return [t[1] for t in tags if len(t) >= 2 and t[0] == 'e']
