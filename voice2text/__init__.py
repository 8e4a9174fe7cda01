"""voice2text: transcribe media with Azure Media Indexer 2 and clean the captions.

Uploads an audio/video file to Azure Media Services, runs the speech
indexing job, downloads the WebVTT captions next to the source file and
writes a plain-text transcript beside them.
"""

__version__ = "0.1.0"
