import io
import random
import sys
from pathlib import Path

import pytest
from PIL import Image

# Ensure repo root is importable (so `import fitsize` works without installing).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def noise_png(width: int, height: int, seed: int = 0) -> bytes:
    # Random pixels are hard to compress, so the search has real work to do.
    rng = random.Random(seed)
    im = Image.frombytes("RGB", (width, height), rng.randbytes(width * height * 3))
    buf = io.BytesIO()
    im.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def noise_image():
    return noise_png
