import math
from bitarray import bitarray
from peerwire.common.errors import MalformedMessageError


class Bitfield:
    """Which pieces a peer holds; bit ``i`` set (MSB first) means piece ``i``."""

    __slots__ = ("bits",)

    def __init__(self, bits: bitarray):
        self.bits = bits

    @classmethod
    def empty(cls, num_pieces: int) -> "Bitfield":
        bits = bitarray(num_pieces, endian="big")
        bits.setall(0)
        return cls(bits)

    @classmethod
    def full(cls, num_pieces: int) -> "Bitfield":
        bits = bitarray(num_pieces, endian="big")
        bits.setall(1)
        return cls(bits)

    @classmethod
    def from_indices(cls, num_pieces: int, indices) -> "Bitfield":
        field = cls.empty(num_pieces)
        for index in indices:
            if not 0 <= index < num_pieces:
                raise IndexError(f"Piece index {index} out of range")
            field.bits[index] = 1
        return field

    @classmethod
    def from_bytes(cls, payload: bytes, num_pieces: int) -> "Bitfield":
        expected_length = math.ceil(num_pieces / 8)
        if len(payload) != expected_length:
            raise MalformedMessageError(
                f"Bitfield wrong length: expected {expected_length}, got {len(payload)}"
            )

        # spare bits in the last byte must be clear
        num_spare_bits = (8 - (num_pieces % 8)) % 8
        if num_spare_bits:
            spare_mask = (1 << num_spare_bits) - 1
            if payload[-1] & spare_mask:
                raise MalformedMessageError(
                    f"Bitfield has spare bits set: last_byte=0b{payload[-1]:08b}"
                )

        bits = bitarray(endian="big")
        bits.frombytes(bytes(payload))
        return cls(bits[:num_pieces])

    def has_piece(self, index: int) -> bool:
        return 0 <= index < len(self.bits) and bool(self.bits[index])

    def set_piece(self, index: int):
        # a have for a piece past the end is ignored rather than fatal
        if 0 <= index < len(self.bits):
            self.bits[index] = 1

    def count(self) -> int:
        return self.bits.count()

    def to_bytes(self) -> bytes:
        return self.bits.tobytes()

    def __len__(self):
        return len(self.bits)
