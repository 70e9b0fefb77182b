'''
Global colored logging configuration for testing.
'''
import logging

from tandem.log import configure

configure(logging.DEBUG, rules={'tandem.core': logging.ERROR})
