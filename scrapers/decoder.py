"""Decoder for obfuscated source tokens.

Identifier-keyed sources publish their stream paths as a string of hex
pairs, each pair standing for one printable character. The mapping is a
fixed substitution table, not arithmetic, so it is written out in full.
"""

_PAIRS: dict[str, str] = {
    # Uppercase letters
    "79": "A", "7a": "B", "7b": "C", "7c": "D", "7d": "E", "7e": "F", "7f": "G",
    "70": "H", "71": "I", "72": "J", "73": "K", "74": "L", "75": "M", "76": "N",
    "77": "O", "68": "P", "69": "Q", "6a": "R", "6b": "S", "6c": "T", "6d": "U",
    "6e": "V", "6f": "W", "60": "X", "61": "Y", "62": "Z",
    # Lowercase letters
    "59": "a", "5a": "b", "5b": "c", "5c": "d", "5d": "e", "5e": "f", "5f": "g",
    "50": "h", "51": "i", "52": "j", "53": "k", "54": "l", "55": "m", "56": "n",
    "57": "o", "48": "p", "49": "q", "4a": "r", "4b": "s", "4c": "t", "4d": "u",
    "4e": "v", "4f": "w", "40": "x", "41": "y", "42": "z",
    # Digits
    "08": "0", "09": "1", "0a": "2", "0b": "3", "0c": "4", "0d": "5", "0e": "6",
    "0f": "7", "00": "8", "01": "9",
    # Punctuation
    "15": "-", "16": ".", "67": "_", "46": "~", "02": ":", "17": "/", "07": "?",
    "1b": "#", "63": "[", "65": "]", "78": "@", "19": "!", "1c": "$", "1e": "&",
    "10": "(", "11": ")", "12": "*", "13": "+", "14": ",", "03": ";", "05": "=",
    "1d": "%",
}


def decode_pair(pair: str) -> str:
    """Map one two-character chunk, passing unknown chunks through unchanged."""
    return _PAIRS.get(pair.lower(), pair)


def decode(token: str) -> str:
    """Decode an obfuscated token.

    A ``:port`` suffix is split off at the first colon, left untouched and
    re-appended after decoding. An odd trailing character is dropped.
    Never raises; the empty string decodes to the empty string.

    >>> decode("79:1935")
    'A:1935'
    """
    if not token:
        return ""

    body, sep, port = token.partition(":")
    usable = len(body) - len(body) % 2
    decoded = "".join(decode_pair(body[i : i + 2]) for i in range(0, usable, 2))
    return decoded + sep + port


def looks_encoded(value: str) -> bool:
    """Tell whether a source URL is in the double-dash encoded form."""
    return value.startswith("--")
