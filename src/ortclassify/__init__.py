"""Image classification with a pre-exported ONNX model."""
