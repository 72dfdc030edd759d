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
import logging

logger = logging.getLogger(__name__)


def match_filter(event, flt):
    if 'ids' in flt and event.get('id') not in flt['ids']:
        return False
    if 'kinds' in flt and event.get('kind') not in flt['kinds']:
        return False
    if 'authors' in flt and event.get('pubkey') not in flt['authors']:
        return False
    if 'since' in flt and event.get('created_at', 0) < flt['since']:
        return False
    if 'until' in flt and event.get('created_at', 0) > flt['until']:
        return False
    for k, v in flt.items():
        if k.startswith('#') and len(k) == 2:
            tag_char = k[1]
            if not any(len(t) >= 2 and t[0] == tag_char and t[1] in v for t in event.get('tags', [])):
                return False
    return True


def normalize_filters(filters):
    if isinstance(filters, dict):
        return [filters]
    return list(filters)


class Transport(abc.ABC):
    """Relay publish/subscribe as seen by the signer session.

    ``subscribe`` callbacks run on the event loop thread, one event at a time.
    """

    @abc.abstractmethod
    def add_relays(self, urls):
        ...

    @abc.abstractmethod
    async def publish(self, event):
        ...

    @abc.abstractmethod
    def subscribe(self, filters, on_event):
        """Returns a callable that cancels the subscription."""


class InMemoryTransport(Transport):

    def __init__(self):
        self.relays = []
        self.events = []
        self.subscriptions = {}
        self._next_sub = 0

    def add_relays(self, urls):
        for url in urls:
            if url not in self.relays:
                self.relays.append(url)

    async def publish(self, event):
        self.events.append(event)
        self.inject(event)
        return True

    def inject(self, event):
        for sub_id, (filters, on_event) in list(self.subscriptions.items()):
            if sub_id not in self.subscriptions:
                continue
            if any(match_filter(event, flt) for flt in filters):
                try:
                    on_event(event)
                except Exception:
                    logger.exception('❌ [Net] Subscriber %s failed on event %s', sub_id, event.get('id'))

    def subscribe(self, filters, on_event):
        self._next_sub += 1
        sub_id = f'mem-{self._next_sub}'
        self.subscriptions[sub_id] = (normalize_filters(filters), on_event)

        def unsubscribe():
            self.subscriptions.pop(sub_id, None)
        return unsubscribe
