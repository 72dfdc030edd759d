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
import sys
import copy
import json
import logging

logger = logging.getLogger(__name__)

CONFIG_FILENAME = 'bunkerchat.json'
DEFAULT_CONFIG = {'relays': ['wss://relay.nsec.app', 'wss://relay.damus.io', 'wss://relay.primal.net'], 'network': {'proxy_url': '', 'proxy_disabled': False, 'proxy_bypass': [], 'auto_reconnect': False, 'reconnect_delay': 5, 'publish_timeout': 10}, 'signer': {'connect_timeout': 300, 'rpc_timeout': 30}, 'storage': {'db_file': 'bunkerchat.db'}, 'logging': {'level': 'INFO'}}


def default_config_path():
    if getattr(sys, 'frozen', False):
        base_path = os.path.dirname(sys.executable)
    else:
        base_path = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_path, CONFIG_FILENAME)


def load_config(path=None):
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = path or default_config_path()
    if not os.path.exists(config_path):
        return config
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = json.load(f)
    except (OSError, ValueError) as e:
        logger.error('❌ [Config] Could not read %s: %s', config_path, e)
        return config
    if not isinstance(user_config, dict):
        logger.error('❌ [Config] %s is not a JSON object, keeping defaults', config_path)
        return config
    if isinstance(user_config.get('relays'), list):
        config['relays'] = [r.strip() for r in user_config['relays'] if isinstance(r, str) and r.strip()]
    for section in ('network', 'signer', 'storage', 'logging'):
        if isinstance(user_config.get(section), dict):
            config[section].update(user_config[section])
    logger.info('✅ [Config] Loaded %s (%d relays)', config_path, len(config['relays']))
    return config


def save_config(config, path=None):
    config_path = path or default_config_path()
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
        return True
    except OSError as e:
        logger.error('❌ [Config] Save failed for %s: %s', config_path, e)
        return False


def setup_logging(level='INFO'):
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format='%(asctime)s [%(levelname)s] %(name)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
