"""
SLIP framing for the ROM bootloader serial link.

Frame format:
    [ 0xC0 | escaped payload | 0xC0 ]

Inside the payload 0xDB is sent as DB DD and 0xC0 as DB DC, so the marker
byte never appears between the two delimiters.
"""

from typing import List, Optional

END = 0xC0
ESC = 0xDB
ESC_END = 0xDC
ESC_ESC = 0xDD


def encode(payload: bytes) -> bytes:
    """
    Wrap payload in SLIP delimiters, escaping marker and escape bytes.

    Args:
        payload: Raw packet bytes

    Returns:
        Framed bytes ready for the wire
    """
    frame = bytearray([END])
    for byte in payload:
        if byte == ESC:
            frame.extend((ESC, ESC_ESC))
        elif byte == END:
            frame.extend((ESC, ESC_END))
        else:
            frame.append(byte)
    frame.append(END)
    return bytes(frame)


def decode(framed: bytes) -> bytes:
    """
    Strip delimiters and undo escaping.

    An escape byte followed by anything other than DC/DD is dropped together
    with the byte after it; decoding carries on with the next byte.
    """
    out = bytearray()
    in_escape = False
    for byte in framed:
        if in_escape:
            in_escape = False
            if byte == ESC_END:
                out.append(END)
            elif byte == ESC_ESC:
                out.append(ESC)
            continue
        if byte == END:
            continue
        if byte == ESC:
            in_escape = True
            continue
        out.append(byte)
    return bytes(out)


class FrameDecoder:
    """
    Incremental SLIP decoder for reading responses off a byte stream.

    Bytes received outside a frame (boot log noise, partial frames from a
    previous attempt) are discarded. Back-to-back delimiters do not produce
    empty frames.

    Example:
        decoder = FrameDecoder()
        for frame in decoder.feed(transport.read(256, 0.1)):
            ...
    """

    def __init__(self) -> None:
        self._partial: Optional[bytearray] = None
        self._in_escape = False

    def reset(self) -> None:
        """Drop any partially received frame."""
        self._partial = None
        self._in_escape = False

    def feed(self, data: bytes) -> List[bytes]:
        """
        Consume bytes and return every frame completed by them.

        Args:
            data: Bytes read from the transport

        Returns:
            Decoded frame payloads, in arrival order
        """
        frames: List[bytes] = []
        for byte in data:
            if self._partial is None:
                if byte == END:
                    self._partial = bytearray()
                continue
            if self._in_escape:
                self._in_escape = False
                if byte == ESC_END:
                    self._partial.append(END)
                elif byte == ESC_ESC:
                    self._partial.append(ESC)
                continue
            if byte == ESC:
                self._in_escape = True
            elif byte == END:
                # Empty frame: this END opens the next one instead
                if self._partial:
                    frames.append(bytes(self._partial))
                    self._partial = None
            else:
                self._partial.append(byte)
        return frames
