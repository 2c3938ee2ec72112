"""Decode wound-tissue segmentation model output into label maps, images and legends"""
