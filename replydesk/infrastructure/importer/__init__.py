from .review_importer import SUPPORTED_EXTENSIONS, ReviewImporter, ImportResult, parse_rating, read_frame
