"""
config.py

Configuration module for the subtitle OCR pipeline.

Purpose:
--------
Contains the defaults used to build a RecognitionConfig: engine
parameters, the character policy, binarization thresholds and
worker pool sizing.

Design Principle:
-----------------
Configuration is isolated from business logic.
Changing thresholds or the engine setup should not require
editing core OCR code.
"""

import os

from dotenv import load_dotenv

# SUBOCR_TESSDATA_DIR may come from a .env file
load_dotenv()

# -----------------------------
# Engine
# -----------------------------
OCR_LANGUAGE = "eng"
TESSDATA_DIR = os.getenv("SUBOCR_TESSDATA_DIR")
PAGE_SEG_MODE = 6  # PSM_SINGLE_BLOCK: images are already cut to the text lines
SOURCE_DPI = 150
ENGINE_TIMEOUT_SEC = 0  # 0 = no timeout

# Tesseract reads I and l as | on subtitle fonts
CHAR_BLACKLIST = "|[]"
CHAR_WHITELIST = ""

# -----------------------------
# Preprocessing
# -----------------------------
ALPHA_THRESHOLD = 100
LUMA_THRESHOLD = 100
BORDER_PX = 5
POLARITY = "auto"  # auto | light_text | dark_text

# -----------------------------
# Post-processing
# -----------------------------
ENABLE_TEXT_CLEANUP = True

# -----------------------------
# Performance
# -----------------------------
WORKER_COUNT = "auto"  # "auto" = one worker per CPU
WORKER_THREAD_PREFIX = "ocr-worker"
OMP_THREAD_LIMIT = "1"

# -----------------------------
# Source
# -----------------------------
MANIFEST_NAME = "index.json"
ALLOWED_EXTENSIONS = [".png", ".bmp", ".tif", ".tiff"]
MAX_FILE_SIZE_MB = 10
