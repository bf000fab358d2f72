"""
replytriage

Triages a Gmail inbox: every unread, tagged thread is classified by a
language model and labelled ToRespond and/or Processed from the verdict.
"""

__version__ = "1.0.0"
__app_name__ = "replytriage"
