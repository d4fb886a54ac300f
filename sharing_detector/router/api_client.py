# sharing_detector/router/api_client.py
"""
Minimal client for the MikroTik RouterOS API (TCP 8728).

The API exchanges sentences made of words. Each word is prefixed with a
variable-length length field and a sentence ends with an empty word. A
command reply is zero or more `!re` sentences followed by `!done`; errors
arrive as `!trap` (command rejected) or `!fatal` (connection closing).
"""
import socket
import struct
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class RouterOSError(Exception):
    """Base class for RouterOS API errors"""


class RouterOSConnectionError(RouterOSError):
    """Socket, login or fatal protocol failure; the connection is unusable"""


class RouterOSTrap(RouterOSError):
    """The router rejected a command"""
    def __init__(self, message, category=None):
        self.category = category
        super().__init__(message)


def encode_length(length: int) -> bytes:
    """Encode a word length using the RouterOS variable-length scheme"""
    if length < 0:
        raise ValueError("length must be non-negative")
    if length < 0x80:
        return struct.pack('!B', length)
    if length < 0x4000:
        return struct.pack('!H', length | 0x8000)
    if length < 0x200000:
        return struct.pack('!I', length | 0xC00000)[1:]
    if length < 0x10000000:
        return struct.pack('!I', length | 0xE0000000)
    return b'\xf0' + struct.pack('!I', length)


def decode_length(first: int, rest: bytes = b'') -> int:
    """Decode a length given its first byte and the following control bytes"""
    if first < 0x80:
        return first
    if first < 0xC0:
        return ((first & 0x3F) << 8) | rest[0]
    if first < 0xE0:
        return ((first & 0x1F) << 16) | (rest[0] << 8) | rest[1]
    if first < 0xF0:
        return ((first & 0x0F) << 24) | (rest[0] << 16) | (rest[1] << 8) | rest[2]
    return struct.unpack('!I', rest[:4])[0]


def extra_length_bytes(first: int) -> int:
    """Number of bytes that follow the first byte of an encoded length"""
    if first < 0x80:
        return 0
    if first < 0xC0:
        return 1
    if first < 0xE0:
        return 2
    if first < 0xF0:
        return 3
    return 4


def encode_word(word: str) -> bytes:
    data = word.encode('utf-8')
    return encode_length(len(data)) + data


def encode_sentence(words: List[str]) -> bytes:
    return b''.join(encode_word(w) for w in words) + encode_length(0)


def parse_attributes(words: List[str]) -> Dict[str, str]:
    """['=name=foo', '=.id=*1'] -> {'name': 'foo', '.id': '*1'}"""
    attrs = {}
    for word in words:
        if not word.startswith('='):
            continue
        key, _, value = word[1:].partition('=')
        attrs[key] = value
    return attrs


class RouterOSClient:
    """
    Synchronous RouterOS API client bound to one router.

    Not thread-safe: use one instance per worker.
    """
    def __init__(self, host, port=8728, username='admin', password='', timeout=5.0):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self.sock: Optional[socket.socket] = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def connected(self):
        return self.sock is not None

    def connect(self):
        if self.sock is not None:
            return
        try:
            self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
            self.sock.settimeout(self.timeout)
        except OSError as e:
            self.sock = None
            raise RouterOSConnectionError(f"cannot connect to {self.host}:{self.port}: {e}") from e

        try:
            self.talk(['/login', f'=name={self.username}', f'=password={self.password}'])
        except RouterOSTrap as e:
            self.close()
            raise RouterOSConnectionError(f"login to {self.host} failed: {e}") from e
        except RouterOSConnectionError:
            self.close()
            raise
        logger.debug(f"Logged in to RouterOS API at {self.host}:{self.port}")

    def close(self):
        if self.sock is None:
            return
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing connection to {self.host}: {e}")
        finally:
            self.sock = None

    def _send(self, data: bytes):
        try:
            self.sock.sendall(data)
        except OSError as e:
            self.close()
            raise RouterOSConnectionError(f"write to {self.host} failed: {e}") from e

    def _recv_exact(self, count: int) -> bytes:
        buf = b''
        while len(buf) < count:
            try:
                chunk = self.sock.recv(count - len(buf))
            except OSError as e:
                self.close()
                raise RouterOSConnectionError(f"read from {self.host} failed: {e}") from e
            if not chunk:
                self.close()
                raise RouterOSConnectionError(f"connection to {self.host} closed by router")
            buf += chunk
        return buf

    def _read_word(self) -> str:
        first = self._recv_exact(1)[0]
        extra = extra_length_bytes(first)
        rest = self._recv_exact(extra) if extra else b''
        length = decode_length(first, rest)
        if length == 0:
            return ''
        return self._recv_exact(length).decode('utf-8', errors='replace')

    def _read_sentence(self) -> List[str]:
        words = []
        while True:
            word = self._read_word()
            if word == '':
                return words
            words.append(word)

    def _communicate(self, words: List[str]):
        """Send one sentence; return the `!re` attributes and the `!done` attributes"""
        if self.sock is None:
            raise RouterOSConnectionError(f"not connected to {self.host}")

        self._send(encode_sentence(words))

        replies = []
        trap = None
        while True:
            sentence = self._read_sentence()
            if not sentence:
                continue
            reply_type, attrs = sentence[0], parse_attributes(sentence[1:])
            if reply_type == '!re':
                replies.append(attrs)
            elif reply_type == '!trap':
                trap = RouterOSTrap(attrs.get('message', 'command failed'), attrs.get('category'))
            elif reply_type == '!fatal':
                message = sentence[1] if len(sentence) > 1 else 'fatal error'
                self.close()
                raise RouterOSConnectionError(f"{self.host}: {message}")
            elif reply_type == '!done':
                if trap is not None:
                    raise trap
                return replies, attrs
            else:
                logger.debug(f"Ignoring unexpected reply {reply_type} from {self.host}")

    def talk(self, words: List[str]) -> List[Dict[str, str]]:
        """Send one command and return the attributes of every `!re` reply"""
        replies, _ = self._communicate(words)
        return replies

    def select(self, path, query=None, proplist=None) -> List[Dict[str, str]]:
        """`<path>/print` with optional exact-match query and property list"""
        words = [f'{path}/print']
        if proplist:
            words.append('=.proplist=' + ','.join(proplist))
        for key, value in (query or {}).items():
            words.append(f'?{key}={value}')
        return self.talk(words)

    def add(self, path, attrs) -> Optional[str]:
        """`<path>/add`; returns the id of the new item"""
        words = [f'{path}/add'] + [f'={key}={value}' for key, value in attrs.items()]
        _, done = self._communicate(words)
        return done.get('ret')

    def remove(self, path, item_id):
        self.talk([f'{path}/remove', f'=.id={item_id}'])
