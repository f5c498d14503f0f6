#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
	WSGI entry point for the hybrid session Flask application.
	The WSGI server imports this file and calls `application`, which
	references the Flask app returned by create_app(). The private key
	is read from PRIVATE_KEY_PEM at import time.
"""

# Import the Flask app factory
from hybridsession.server import create_app

# WSGI servers require this symbol
application = create_app()
