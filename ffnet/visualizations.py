"""
Visualization Utilities for ffnet
=================================

This module provides functions for visualizing:
- Training progress (loss curves from NeuralNet.fit)
- Conv2DLayer kernels
"""

import numpy as np
import matplotlib.pyplot as plt


def plot_training_history(history, figsize=(8, 5), save_path=None, show=True):
    """
    Plot training history (loss curves).

    Args:
        history: Dictionary with 'loss' and optionally 'val_loss'
        figsize: Figure size
        save_path: Path to save figure
        show: Whether to call plt.show()
    """
    fig, ax = plt.subplots(figsize=figsize)

    epochs = range(1, len(history['loss']) + 1)

    ax.plot(epochs, history['loss'], 'b-', label='Training Loss', linewidth=2)
    if history.get('val_loss'):
        ax.plot(epochs, history['val_loss'], 'r-', label='Validation Loss', linewidth=2)
    ax.set_xlabel('Epoch', fontsize=12)
    ax.set_ylabel('Loss', fontsize=12)
    ax.set_title('Training and Validation Loss', fontsize=14)
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"Training history plot saved to {save_path}")

    if show:
        plt.show()
    return fig


def kernel_images(layer):
    """
    Kernels of a Conv2DLayer as an array of shape (kernels, height, width, channels).
    """
    canonical = layer.canonical_kernels()
    return canonical.reshape(layer.kernel_count(), layer.kernel_height, layer.kernel_width, layer.channels)


def visualize_kernels(layer, max_kernels=32, figsize=(12, 8), save_path=None, show=True):
    """
    Visualize Conv2DLayer kernel weights.

    Multi-channel kernels are averaged across channels.

    Args:
        layer: Conv2DLayer
        max_kernels: Maximum number of kernels to display
        figsize: Figure size
        save_path: Path to save figure
        show: Whether to call plt.show()
    """
    kernels = kernel_images(layer)
    n_kernels = min(kernels.shape[0], max_kernels)

    n_cols = int(np.ceil(np.sqrt(n_kernels)))
    n_rows = int(np.ceil(n_kernels / n_cols))

    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize)
    axes = np.array(axes).flatten()

    for i in range(n_kernels):
        img = np.mean(kernels[i], axis=-1)

        # Normalize for visualization
        img = (img - img.min()) / (img.max() - img.min() + 1e-8)

        axes[i].imshow(img, cmap='gray')
        axes[i].set_title(f'Kernel {i}', fontsize=8)
        axes[i].axis('off')

    for i in range(n_kernels, len(axes)):
        axes[i].axis('off')

    plt.suptitle('Convolution Kernels', fontsize=14)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        print(f"Kernel visualization saved to {save_path}")

    if show:
        plt.show()
    return fig
