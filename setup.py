"""
setup.py for face-match monorepo.

Needed because the source tree does not follow the standard layout:
  - face_match lives under backend/src/face_match/
  - face_match_frontend lives under frontend/

pyproject.toml handles metadata; this file maps package dirs.
"""

from setuptools import setup

setup(
    package_dir={
        "face_match": "backend/src/face_match",
        "face_match_frontend": "frontend",
    },
    packages=[
        "face_match",
        "face_match.cli",
        "face_match.search",
        "face_match.storage",
        "face_match.vision",
        "face_match_frontend",
    ],
)
