import os
import sys

# Add the src directory to Python path
src_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src')
sys.path.append(src_path)

from backup_retention.cli import main

if __name__ == '__main__':
    sys.exit(main())
