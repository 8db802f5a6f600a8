"""Raw packet codec, response demultiplexing and the link-layer channel"""
