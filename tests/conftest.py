import os
import tempfile

os.environ.setdefault('PROVIDER', 'dummy')
os.environ.setdefault('MAX_SESSIONS', '3')
os.environ.setdefault('HISTORY_DIR', tempfile.mkdtemp(prefix='image-splitter-history-'))
