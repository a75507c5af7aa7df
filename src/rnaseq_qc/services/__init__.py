"""
Service layer for RNA-seq count preprocessing.

This subpackage contains code that interacts with the outside world:
files, file formats, figures on disk.
"""
