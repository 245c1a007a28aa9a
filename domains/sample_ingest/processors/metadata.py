"""
Metadata decoding and category classification.

A metadata document is the JSON sidecar delivered next to each sample. The
``sample`` and ``sample_meta_data`` sections, the pack name and the tag list
are required; other modelled fields are optional and unknown fields are
ignored.

Classification maps the sample's tags onto a fixed category taxonomy with a
first-match rule table.
"""

import json
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from domains.sample_ingest.errors import DecodeError


class Category(str, Enum):
    """Library category taxonomy; values are the on-disk directory names."""

    BASS = "Bass"
    BELL = "Bell"
    BRASS = "Brass"
    CHIP = "Chip"
    CYMBAL = "Cymbal"
    DRONE = "Drone"
    DRUM_LOOP = "Drum Loop"
    GUITAR = "Guitar"
    HI_HAT = "Hi-hat"
    KEYBOARDS = "Keyboards"
    KICK = "Kick"
    LEAD = "Lead"
    MALLET = "Mallet"
    ORCHESTRAL = "Orchestral"
    ORGAN = "Organ"
    OTHER_DRUMS = "Other Drums"
    PAD = "Pad"
    PERCUSSION = "Percussion"
    PIANO = "Piano"
    SNARE = "Snare"
    SOUND_FX = "Sound FX"
    STRINGS = "Strings"
    SYNTH = "Synth"
    TOM = "Tom"
    UNKNOWN = "Unknown"
    VOCAL = "Vocal"
    WINDS = "Winds"

    @classmethod
    def parse(cls, name: str) -> "Category":
        """
        Parse a user-supplied category name.

        Matching is case-insensitive and tolerates missing spaces or hyphens
        ("drumloop", "hihat", "fx").

        Raises:
            ValueError: If no category matches
        """
        wanted = name.strip().lower()
        compact = wanted.replace(" ", "").replace("-", "")

        if compact == "fx":
            return cls.SOUND_FX

        for category in cls:
            value = category.value.lower()
            if wanted == value or compact == value.replace(" ", "").replace("-", ""):
                return category

        raise ValueError(f"Invalid category: {name}")


# First matching tag wins; tags are checked in document order.
CATEGORY_RULES = [
    # Drum elements
    ({"kick", "kicks"}, Category.KICK),
    ({"snare", "snares"}, Category.SNARE),
    ({"hihat", "hi-hat", "hihats", "hi-hats"}, Category.HI_HAT),
    ({"cymbal", "cymbals"}, Category.CYMBAL),
    ({"tom", "toms"}, Category.TOM),
    ({"percussion", "perc"}, Category.PERCUSSION),
    ({"drum loop", "drum loops", "drums"}, Category.DRUM_LOOP),
    # Melodic elements
    ({"bass", "bassline", "sub bass"}, Category.BASS),
    ({"lead", "leads", "lead synth"}, Category.LEAD),
    ({"pad", "pads", "ambient"}, Category.PAD),
    ({"synth", "synthesizer"}, Category.SYNTH),
    # Instruments
    ({"piano"}, Category.PIANO),
    ({"guitar"}, Category.GUITAR),
    ({"organ"}, Category.ORGAN),
    ({"bell", "bells"}, Category.BELL),
    ({"brass"}, Category.BRASS),
    ({"strings", "string"}, Category.STRINGS),
    ({"vocal", "vocals", "voice"}, Category.VOCAL),
    # Effects
    ({"fx", "sfx", "sound fx", "effects"}, Category.SOUND_FX),
    ({"drone", "texture"}, Category.DRONE),
]


def classify(tags: List[str]) -> Category:
    """
    Map tags to a library category.

    Args:
        tags: Tags from the metadata document

    Returns:
        Category of the first tag matching a rule, else ``Category.UNKNOWN``
    """
    for tag in tags:
        folded = tag.strip().casefold()
        for aliases, category in CATEGORY_RULES:
            if folded in aliases:
                return category

    return Category.UNKNOWN


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Pack(_Lenient):
    """Sample pack the sample belongs to."""
    uuid: str = ""
    name: str
    provider_name: str = ""


class SampleFile(_Lenient):
    """Download descriptor of the binary."""
    url: Optional[str] = None
    file_size: int = 0


class SampleMetaData(_Lenient):
    """Descriptive fields of the sample."""
    audio_key: Optional[str] = None
    bpm: Optional[int] = None
    chord_type: Optional[str] = None
    duration: int = 0
    filename: Optional[str] = None
    pack: Pack
    preview_url: Optional[str] = None
    provider_name: str = ""
    sample_type: str = ""
    tags: List[str]
    purchased_at: str = ""
    asset_uuid: str = ""


class SampleMetadata(_Lenient):
    """Top-level metadata document."""
    sample: SampleFile
    sample_meta_data: SampleMetaData

    @property
    def category(self) -> Category:
        return classify(self.sample_meta_data.tags)

    @property
    def pack_name(self) -> str:
        return self.sample_meta_data.pack.name

    @property
    def provider_name(self) -> str:
        return self.sample_meta_data.provider_name or self.sample_meta_data.pack.provider_name


def decode(path: Path) -> SampleMetadata:
    """
    Load and validate a metadata document.

    Args:
        path: JSON metadata file

    Returns:
        Parsed metadata

    Raises:
        DecodeError: On unreadable files, invalid JSON, missing required
            sections or wrong field types
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DecodeError(path, str(e)) from e

    try:
        document = json.loads(content)
    except json.JSONDecodeError as e:
        raise DecodeError(path, f"invalid JSON: {e}") from e

    if not isinstance(document, dict):
        raise DecodeError(path, "top-level value is not an object")

    try:
        return SampleMetadata.model_validate(document)
    except ValidationError as e:
        raise DecodeError(path, str(e)) from e
