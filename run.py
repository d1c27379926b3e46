#!/usr/bin/env python3
"""
objtransfer command-line runner.

Usage:
    python run.py namespace                               # Print the namespace
    python run.py upload-file big.bin -b my-bucket        # Multipart upload
    python run.py upload-stream - -b my-bucket -n obj     # Stream stdin
    python run.py resume UPLOAD_ID big.bin -b my-bucket -n big.bin
    python run.py -p oci demo --flow file                 # Example flow
"""

import sys
from objtransfer.cli import main

if __name__ == "__main__":
    sys.exit(main())
