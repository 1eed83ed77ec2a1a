"""
Configuration constants for DirGallery.
"""
import os

# Cache layout (relative to the scanned root unless GALLERY_CACHE_DIR is set)
CACHE_DIR_NAME = '.gallery-cache'
THUMBNAILS_DIR_NAME = 'thumbnails'
METADATA_DIR_NAME = 'metadata'
CACHE_DIR = os.getenv('GALLERY_CACHE_DIR')

# Directory names never descended into while scanning
DEPENDENCY_DIR_NAME = 'node_modules'
HIDDEN_PREFIX = '.'

# Path segments that mark a directory full of generated thumbnails
THUMBNAIL_DIR_PATTERNS = {'thumbnails', 'thumb', 'thumbs', '.thumbnails'}

# File extensions by category
IMAGE_EXTS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tiff', '.svg'}
VIDEO_EXTS = {'.mp4', '.mov', '.avi', '.mkv', '.webm', '.ogg', '.m4v', '.3gp', '.wmv', '.flv'}
MEDIA_EXTS = IMAGE_EXTS | VIDEO_EXTS

# Thumbnail variants
FULL_SIZE = (300, 300)
FULL_QUALITY = 80
TINY_SIZE = (64, 64)
TINY_QUALITY = 60
THUMBNAIL_SUFFIX = '.jpg'
TINY_MARKER = '_tiny'

# Video placeholder
PLACEHOLDER_SIZE = (300, 200)
PLACEHOLDER_BACKGROUND = (52, 73, 94)
PLACEHOLDER_GLYPH = (44, 62, 80)

# Snapshot cache freshness window (seconds)
CACHE_DURATION = float(os.getenv('GALLERY_CACHE_DURATION', '30'))

# Scanner progress is published every N files found
SCAN_PROGRESS_EVERY = 10

# Generation batching: (upper bound on total jobs, batch size)
BATCH_TIERS = ((100, 3), (500, 6))
MAX_BATCH_SIZE = 10
LARGE_GALLERY_THRESHOLD = 500
BATCH_DELAY_LARGE = 0.05
BATCH_DELAY_DEFAULT = 0.1

# Progress events: one every max(PROGRESS_MIN_STEP, total // PROGRESS_DIVISOR) jobs
PROGRESS_MIN_STEP = 10
PROGRESS_DIVISOR = 50

# Per-subscriber event queue bound
SUBSCRIBER_QUEUE_SIZE = 1000

# Server
HOST = os.getenv('GALLERY_HOST', '127.0.0.1')
PORT = int(os.getenv('GALLERY_PORT', '3000'))
