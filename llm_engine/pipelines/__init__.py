from .tool_loop import ChunkSink, LoopState, LoopTransition, ToolLoopController, encode_tool_result

__all__ = ["ChunkSink", "LoopState", "LoopTransition", "ToolLoopController", "encode_tool_result"]
