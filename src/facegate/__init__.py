"""FaceGate: face quality gate and identity matching for checkpoint attendance."""
