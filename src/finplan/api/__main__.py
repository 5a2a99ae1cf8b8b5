"""
Entry point for running the API as a module: python -m finplan.api
"""
from .app import main

if __name__ == '__main__':
    main()
