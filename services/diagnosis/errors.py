"""Exceptions raised by the diagnosis pipeline."""

from __future__ import annotations


class ImageReferenceError(ValueError):
	"""The submitted image reference is missing or malformed."""


class IdentificationError(RuntimeError):
	"""The identification service failed or found no plant."""

	def __init__(self, message: str, *, unidentified: bool = False) -> None:
		super().__init__(message)
		self.unidentified = unidentified
