"""Workflow steps of a voice2text run.

WHY: Each phase of a run (upload, indexing, download, caption cleanup)
is a separate concern with its own failure mode. Keeping them as plain
async functions that take the REST client explicitly lets the CLI wire
them in order and lets tests drive each phase alone.

HOW: upload.py creates the input asset, indexing.py submits and watches
the job, download.py fetches the output asset, captions.py turns the
WebVTT file into text. keyboard.py feeds the escape-key cancellation
token used by indexing.py.

RULES:
- No module here holds global client state
- Remote failures surface as the typed exceptions of api.client / api.transfer
"""
