"""
Variable-width LZW decoding for GIF image blocks.

Codes are packed least significant bit first. The code width starts at
``min_code_size + 1`` bits and grows up to 12 bits.
"""

from typing import List

MAX_CODE_BITS = 12
MAX_TABLE_SIZE = 1 << MAX_CODE_BITS


class LZWError(ValueError):
    """The compressed stream contains a code that cannot be resolved."""


def decode(data: bytes, min_code_size: int) -> bytearray:
    """
    Decode LZW data into palette indexes.

    A stream that ends without an end code returns what was decoded so far;
    the caller decides whether the pixel count is sufficient.
    """
    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    base: List[bytes] = [bytes((i,)) for i in range(clear_code)] + [b"", b""]

    table = list(base)
    code_size = min_code_size + 1
    code_mask = (1 << code_size) - 1
    prev = None
    out = bytearray()

    bit_buffer = 0
    bit_count = 0
    for byte in data:
        bit_buffer |= byte << bit_count
        bit_count += 8
        while bit_count >= code_size:
            code = bit_buffer & code_mask
            bit_buffer >>= code_size
            bit_count -= code_size

            if code == clear_code:
                table = list(base)
                code_size = min_code_size + 1
                code_mask = (1 << code_size) - 1
                prev = None
                continue
            if code == end_code:
                return out

            if code < len(table):
                entry = table[code]
                if prev is not None and len(table) < MAX_TABLE_SIZE:
                    table.append(prev + entry[:1])
            elif code == len(table) and prev is not None:
                entry = prev + prev[:1]
                table.append(entry)
            else:
                raise LZWError(f"Invalid LZW code {code} (table size {len(table)})")

            out += entry
            prev = entry
            if len(table) == (1 << code_size) and code_size < MAX_CODE_BITS:
                code_size += 1
                code_mask = (1 << code_size) - 1
    return out
