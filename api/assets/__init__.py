"""
Assets module - uploading, reconciling and cleaning up the externally
stored images that records reference.
"""
