"""
2ch Archiver – incrementally archive imageboard threads to local storage.

Supports:
  • Dumping a whole board (catalogue → every live thread) or a single thread
  • Monitoring a board or thread on a fixed polling interval
  • Flagging deleted posts instead of dropping them
  • Content-addressed attachment storage on disk or in MinIO/S3
  • Copying archived threads between archive roots
"""
